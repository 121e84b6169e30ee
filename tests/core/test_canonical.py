# tests/core/test_canonical.py
"""Tests for canonical JSON serialization and hashing."""

import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from tickflow.core.canonical import (
    CANONICAL_VERSION,
    _normalize_value,
    canonical_json,
    stable_hash,
    to_json_safe,
)


class TestNormalizeValue:
    """Test _normalize_value handles Python primitives."""

    def test_primitives_pass_through(self) -> None:
        assert _normalize_value("hello") == "hello"
        assert _normalize_value(42) == 42
        assert _normalize_value(3.14) == 3.14
        assert _normalize_value(None) is None
        assert _normalize_value(True) is True

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_floats_rejected(self, value: float) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            _normalize_value(value)


class TestNumpyTypeConversion:
    """Generators produce numpy scalars; they must hash like Python values."""

    def test_numpy_int64_converts_to_int(self) -> None:
        result = _normalize_value(np.int64(42))
        assert result == 42
        assert type(result) is int

    def test_numpy_float64_converts_to_float(self) -> None:
        result = _normalize_value(np.float64(2.5))
        assert type(result) is float

    def test_numpy_nan_raises(self) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            _normalize_value(np.float64("nan"))

    def test_numpy_array_converts_to_list(self) -> None:
        assert _normalize_value(np.array([1, 2, 3])) == [1, 2, 3]


class TestCanonicalJson:
    def test_keys_sorted_without_whitespace(self) -> None:
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_tuple_becomes_list(self) -> None:
        assert to_json_safe({"t": (1, 2)}) == {"t": [1, 2]}

    def test_nested_nan_raises(self) -> None:
        with pytest.raises(ValueError):
            canonical_json({"outer": {"inner": [1.0, float("nan")]}})


class TestStableHash:
    def test_key_order_does_not_matter(self) -> None:
        assert stable_hash({"a": 1, "b": 2}) == stable_hash({"b": 2, "a": 1})

    def test_different_values_differ(self) -> None:
        assert stable_hash({"a": 1}) != stable_hash({"a": 2})

    def test_hash_is_sha256_hex(self) -> None:
        digest = stable_hash({"x": 1})
        assert len(digest) == 64
        int(digest, 16)

    def test_version_constant(self) -> None:
        assert CANONICAL_VERSION.startswith("sha256")

    @given(
        st.dictionaries(
            st.text(max_size=8),
            st.integers(min_value=-(2**53) + 1, max_value=2**53 - 1) | st.text(max_size=8),
            max_size=8,
        )
    )
    def test_hash_is_deterministic(self, data: dict[str, object]) -> None:
        assert stable_hash(data) == stable_hash(dict(reversed(list(data.items()))))
