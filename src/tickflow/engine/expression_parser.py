# src/tickflow/engine/expression_parser.py
"""Safe parser for the formula mini-language.

Uses Python's ast module to parse and evaluate formulas in a restricted
subset of Python. This is NOT eval() - it's a whitelist-based parser.

The parser operates in two phases:
1. Parse-time validation: Reject forbidden constructs at construction
2. Evaluation: Execute the validated AST against a flat binding map

Formulas come from scenario JSON, which is edited by hand in the UI, so
every failure mode surfaces as a typed FormulaError carrying the formula
text. Callers log it as ``formula_error`` and carry on with the tick.
"""

from __future__ import annotations

import ast
import math
import operator
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from tickflow.contracts.errors import (
    FormulaEvaluationError,
    FormulaSecurityError,
    FormulaSyntaxError,
)

# Allowed comparison operators
_COMPARISON_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

# Allowed binary operators
_BINARY_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

# Allowed unary operators
_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

# Pure functions callable by name
_FUNCTIONS: dict[str, Any] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
    "sum": sum,
    "len": len,
}

# Literal names; lowercase spellings match what JSON-minded authors type
_LITERAL_NAMES: dict[str, Any] = {
    "True": True,
    "False": False,
    "None": None,
    "true": True,
    "false": False,
    "null": None,
}


class _FormulaValidator(ast.NodeVisitor):
    """AST visitor that rejects constructs outside the formula language."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.names: set[str] = set()

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self.errors.append(f"Forbidden name: {node.id!r}")
        elif node.id not in _LITERAL_NAMES:
            self.names.add(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        """Allow dotted property access, never private or dunder attributes."""
        if node.attr.startswith("_"):
            self.errors.append(f"Forbidden attribute access: {node.attr!r}")
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if isinstance(node.slice, ast.Slice):
            self.errors.append("Slice syntax (e.g., [1:3]) is forbidden")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        """Allow only whitelisted functions called by bare name."""
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            self.errors.append(f"Forbidden function call: {ast.unparse(node.func)}")
            return
        if node.keywords:
            self.errors.append(f"{node.func.id}() does not accept keyword arguments")
        for arg in node.args:
            self.visit(arg)

    def visit_Compare(self, node: ast.Compare) -> None:
        for op in node.ops:
            if type(op) not in _COMPARISON_OPS:
                self.errors.append(f"Forbidden comparison operator: {type(op).__name__}")
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if type(node.op) not in _BINARY_OPS:
            self.errors.append(f"Forbidden binary operator: {type(node.op).__name__}")
        self.generic_visit(node)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY_OPS:
            self.errors.append(f"Forbidden unary operator: {type(node.op).__name__}")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if node.value is not None and not isinstance(node.value, str | int | float | bool):
            self.errors.append(f"Forbidden constant type: {type(node.value).__name__}")

    def visit_Dict(self, node: ast.Dict) -> None:
        for key in node.keys:
            if key is None:
                self.errors.append("Dict spread (**) is forbidden")
        self.generic_visit(node)

    # Explicitly forbidden constructs

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self.errors.append("Lambda expressions are forbidden")

    def visit_ListComp(self, node: ast.ListComp) -> None:
        self.errors.append("List comprehensions are forbidden")

    def visit_DictComp(self, node: ast.DictComp) -> None:
        self.errors.append("Dict comprehensions are forbidden")

    def visit_SetComp(self, node: ast.SetComp) -> None:
        self.errors.append("Set comprehensions are forbidden")

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> None:
        self.errors.append("Generator expressions are forbidden")

    def visit_Await(self, node: ast.Await) -> None:
        self.errors.append("Await expressions are forbidden")

    def visit_Yield(self, node: ast.Yield) -> None:
        self.errors.append("Yield expressions are forbidden")

    def visit_YieldFrom(self, node: ast.YieldFrom) -> None:
        self.errors.append("Yield from expressions are forbidden")

    def visit_NamedExpr(self, node: ast.NamedExpr) -> None:
        self.errors.append("Assignment expressions (:=) are forbidden")

    def visit_JoinedStr(self, node: ast.JoinedStr) -> None:
        self.errors.append("F-strings are forbidden")

    def visit_Starred(self, node: ast.Starred) -> None:
        self.errors.append("Starred expressions (*) are forbidden")


class _FormulaEvaluator(ast.NodeVisitor):
    """AST visitor that evaluates validated formulas against bindings."""

    def __init__(self, bindings: Mapping[str, Any], formula: str) -> None:
        self._bindings = bindings
        self._formula = formula

    def _fail(self, msg: str, cause: Exception | None = None) -> FormulaEvaluationError:
        error = FormulaEvaluationError(msg, formula=self._formula)
        error.__cause__ = cause
        return error

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        try:
            return self._bindings[node.id]
        except KeyError:
            available = sorted(self._bindings)
            raise self._fail(f"Unknown name '{node.id}'. Available: {available}") from None

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        """Dotted access reads mapping keys; objects are opaque."""
        value = self.visit(node.value)
        if isinstance(value, Mapping):
            if node.attr in value:
                return value[node.attr]
            raise self._fail(f"Property '{node.attr}' not found. Available: {sorted(value)}")
        raise self._fail(f"Cannot read property '{node.attr}' of {type(value).__name__}")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return value[key]
        except KeyError as e:
            raise self._fail(f"Key '{key}' not found", e) from e
        except IndexError as e:
            raise self._fail(f"Index {key} out of range for {type(value).__name__}", e) from e
        except TypeError as e:
            raise self._fail(f"Cannot access '{key}' on {type(value).__name__}: {e}", e) from e

    def visit_Call(self, node: ast.Call) -> Any:
        func_name = node.func.id  # type: ignore[attr-defined]
        args = [self.visit(arg) for arg in node.args]
        try:
            return _FUNCTIONS[func_name](*args)
        except (TypeError, ValueError, OverflowError) as e:
            raise self._fail(f"{func_name}() failed: {e}", e) from e

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            try:
                if not _COMPARISON_OPS[type(op)](left, right):
                    return False
            except TypeError as e:
                msg = (
                    f"type error in comparison ({type(op).__name__}): cannot compare "
                    f"{type(left).__name__} and {type(right).__name__}"
                )
                raise self._fail(msg, e) from e
            left = right
        return True

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_name = type(node.op).__name__
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError as e:
            raise self._fail(f"division by zero in {op_name} operation", e) from e
        except (TypeError, OverflowError) as e:
            msg = f"type error in {op_name}: cannot apply to {type(left).__name__} and {type(right).__name__}"
            raise self._fail(msg, e) from e

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        try:
            return _UNARY_OPS[type(node.op)](operand)
        except TypeError as e:
            msg = f"type error in unary {type(node.op).__name__}: cannot apply to {type(operand).__name__}"
            raise self._fail(msg, e) from e

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Set(self, node: ast.Set) -> Any:
        try:
            return {self.visit(elt) for elt in node.elts}
        except TypeError as e:
            raise self._fail(f"cannot create set literal: {e}", e) from e

    def visit_Dict(self, node: ast.Dict) -> Any:
        try:
            return {
                self.visit(k): self.visit(v)
                for k, v in zip(node.keys, node.values, strict=True)
                if k is not None
            }
        except TypeError as e:
            raise self._fail(f"cannot create dict literal: {e}", e) from e


class FormulaParser:
    """Parsed, validated formula ready to evaluate against bindings.

    Allowed operations:
    - Names resolved from the binding map: inputA, count, threshold
    - Property access on mappings: inputA.data.value, message.payload.x
    - Subscripts: values[0], event.rawData['field']
    - Arithmetic: +, -, *, /, //, %
    - Comparisons: ==, !=, <, >, <=, >=, in, not in
    - Boolean operators: and, or, not
    - Ternary expressions: x if condition else y
    - Literals, including list/tuple/set/dict literals
    - Functions: abs, min, max, round, floor, ceil, sqrt, sum, len

    Example:
        parser = FormulaParser("inputA.data.value * 2 + inputB.data.value")
        parser.evaluate({"inputA": {"data": {"value": 3}}, "inputB": {"data": {"value": 1}}})
        # Returns 7
    """

    def __init__(self, formula: str) -> None:
        """Parse and validate formula at construction time.

        Args:
            formula: The formula text

        Raises:
            FormulaSyntaxError: If formula is not a valid expression
            FormulaSecurityError: If formula contains forbidden constructs
        """
        self._formula = formula

        try:
            self._ast = ast.parse(formula.strip(), mode="eval")
        except SyntaxError as e:
            raise FormulaSyntaxError(f"Invalid syntax: {e.msg}", formula=formula) from e

        validator = _FormulaValidator()
        validator.visit(self._ast)
        if validator.errors:
            raise FormulaSecurityError("; ".join(validator.errors), formula=formula)
        self._names = frozenset(validator.names)

    @property
    def formula(self) -> str:
        """Return the original formula text."""
        return self._formula

    @property
    def names(self) -> frozenset[str]:
        """Top-level binding names the formula reads."""
        return self._names

    def evaluate(self, bindings: Mapping[str, Any]) -> Any:
        """Evaluate the formula.

        Args:
            bindings: Flat map of names to values (mappings for dotted access)

        Returns:
            The formula's value

        Raises:
            FormulaEvaluationError: If evaluation fails against these bindings
        """
        evaluator = _FormulaEvaluator(bindings, self._formula)
        try:
            return evaluator.visit(self._ast)
        except ArithmeticError as e:
            raise FormulaEvaluationError(f"arithmetic error: {e}", formula=self._formula) from e

    def __repr__(self) -> str:
        return f"FormulaParser({self._formula!r})"


@lru_cache(maxsize=1024)
def compile_formula(formula: str) -> FormulaParser:
    """Parse a formula once and reuse it across ticks."""
    return FormulaParser(formula)


def evaluate_formula(formula: str, bindings: Mapping[str, Any]) -> Any:
    """Parse (cached) and evaluate a formula in one call.

    Raises:
        FormulaError: Any parse, validation or evaluation failure
    """
    return compile_formula(formula).evaluate(bindings)
