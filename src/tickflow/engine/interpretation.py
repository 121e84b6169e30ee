"""Interpretation rules: raw FSM events in, structured messages out.

Rules are considered in descending ``priority`` (declaration order breaks
ties). The first enabled rule whose conditions match the event decides the
outcome; later rules are not consulted even if the winner produces nothing.

Methods:
    pattern      regex list; fields extracted from ``$N`` or named groups
    formula      formula over event/metadata/timestamp/type/sourceType
    script       ordered ``name = formula`` assignments building the payload
    ai           delegated to an injected InterpretationClient
    passthrough  raw data copied, optionally through a dotted fieldMapping

Any rule may carry ``template`` fields, rendered with a sandboxed jinja2
environment against the event and the extracted payload.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from tickflow.contracts.enums import InterpretationMethod
from tickflow.contracts.errors import FormulaError, FormulaSyntaxError
from tickflow.contracts.results import InterpretationResult
from tickflow.contracts.tokens import FSMEvent, FSMMessage
from tickflow.core.scenario import InterpretationRule
from tickflow.engine.expression_parser import FormulaParser, compile_formula

_ASSIGNMENT = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=(?!=)\s*(.+)$")

_templates = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


class InterpretationError(Exception):
    """Raised when a matching rule cannot produce its message."""


@dataclass(frozen=True)
class AIInterpretation:
    """What an InterpretationClient returns for one event."""

    message_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    confidence: float = 1.0


@runtime_checkable
class InterpretationClient(Protocol):
    """External interpreter used by ``ai`` rules.

    The engine never talks to a model provider itself; callers inject a
    client. Implementations must be deterministic if runs are to replay.
    """

    def interpret(self, event: FSMEvent, prompt: str, rule: InterpretationRule) -> AIInterpretation:
        """Interpret one event.

        Args:
            event: The raw event
            prompt: The rule's prompt rendered against the event
            rule: The rule being applied

        Returns:
            The proposed message type, payload and confidence
        """
        ...


def parse_script(script: str) -> list[tuple[str, FormulaParser]]:
    """Parse a script into ordered (field, formula) assignments.

    One assignment per line; blank lines and ``#`` comments are skipped.
    Later assignments can read earlier fields by name.

    Raises:
        FormulaSyntaxError: If a line is not an assignment
        FormulaError: If a right-hand side is not a valid formula
    """
    assignments: list[tuple[str, FormulaParser]] = []
    for number, raw in enumerate(script.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT.match(line)
        if not match:
            raise FormulaSyntaxError(f"line {number}: expected 'name = formula'", line)
        assignments.append((match.group(1), compile_formula(match.group(2).strip())))
    if not assignments:
        raise FormulaSyntaxError("script has no assignments", script)
    return assignments


def event_text(event: FSMEvent) -> str:
    """Text form of an event's raw data, used for regex matching."""
    raw = event.raw_data
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, sort_keys=True, default=str)
    return str(raw)


def _lookup_path(data: Any, path: str) -> tuple[bool, Any]:
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, str) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return False, None
            current = current[index]
        else:
            return False, None
    return True, current


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Render one template field.

    Raises:
        InterpretationError: On syntax errors, undefined names or sandbox
            violations
    """
    try:
        return _templates.from_string(template).render(**context)
    except TemplateError as e:
        raise InterpretationError(f"template {template!r}: {e}") from e


class InterpretationEngine:
    """Applies a node's interpretation rules to its events."""

    def __init__(
        self,
        rules: Sequence[InterpretationRule],
        *,
        client: InterpretationClient | None = None,
    ) -> None:
        # sorted() is stable, so equal priorities keep declaration order
        self._rules = sorted(rules, key=lambda r: -r.priority)
        self._client = client

    @property
    def rules(self) -> list[InterpretationRule]:
        return list(self._rules)

    def matches(self, rule: InterpretationRule, event: FSMEvent) -> bool:
        """Whether a rule's conditions accept an event."""
        if not rule.enabled:
            return False
        cond = rule.conditions
        if cond.event_types and event.type not in cond.event_types:
            return False
        if cond.source_types and event.source_type not in cond.source_types:
            return False
        if cond.event_pattern and not re.search(cond.event_pattern, event_text(event), re.IGNORECASE):
            return False
        return all(event.metadata.get(key) == expected for key, expected in cond.metadata.items())

    def select_rule(self, event: FSMEvent) -> InterpretationRule | None:
        for rule in self._rules:
            if self.matches(rule, event):
                return rule
        return None

    def interpret(self, event: FSMEvent) -> InterpretationResult:
        """Turn an event into a message using the winning rule.

        Never raises: method failures are reported as an error result so the
        caller can log them against the node.
        """
        rule = self.select_rule(event)
        if rule is None:
            return InterpretationResult.no_match()
        try:
            produced = self._apply(rule, event)
            if produced is None:
                return InterpretationResult.no_match()
            message_type, payload, confidence = produced
            if rule.template:
                context = {"event": event.as_binding(), "payload": payload}
                payload = {**payload, **{name: render_template(t, context) for name, t in rule.template.items()}}
        except (FormulaError, InterpretationError) as e:
            return InterpretationResult.failure(rule.id, str(e))
        message = FSMMessage(
            message_id=f"{event.event_id}:msg",
            type=message_type,
            timestamp=event.timestamp,
            payload=payload,
            source_event_id=event.event_id,
            interpretation_rule_id=rule.id,
            confidence=confidence,
        )
        return InterpretationResult.success(message, rule.id)

    def _apply(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float] | None:
        method = rule.method
        if method == InterpretationMethod.PATTERN:
            return self._apply_pattern(rule, event)
        if method == InterpretationMethod.FORMULA:
            return self._apply_formula(rule, event)
        if method == InterpretationMethod.SCRIPT:
            return self._apply_script(rule, event)
        if method == InterpretationMethod.AI:
            return self._apply_ai(rule, event)
        return self._apply_passthrough(rule, event)

    def _apply_pattern(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float] | None:
        text = event_text(event)
        for spec in rule.patterns:
            match = re.search(spec.pattern, text, re.IGNORECASE)
            if match is None:
                continue
            payload: dict[str, Any] = {"originalEvent": event.raw_data}
            for name, ref in spec.extract_fields.items():
                if ref.startswith("$") and ref[1:].isdigit():
                    index = int(ref[1:])
                    if index <= (match.re.groups or 0) and match.group(index) is not None:
                        payload[name] = match.group(index)
                elif match.groupdict().get(ref) is not None:
                    payload[name] = match.group(ref)
            return spec.message_type, payload, 1.0
        return None

    def _formula_bindings(self, event: FSMEvent) -> dict[str, Any]:
        return {
            "event": event.raw_data,
            "metadata": dict(event.metadata),
            "timestamp": event.timestamp,
            "type": event.type,
            "sourceType": event.source_type.value,
        }

    def _apply_formula(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float] | None:
        assert rule.formula is not None
        result = compile_formula(rule.formula).evaluate(self._formula_bindings(event))
        if result is None:
            return None
        payload = dict(result) if isinstance(result, Mapping) else {"value": result}
        return rule.message_type or event.type, payload, 1.0

    def _apply_script(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float]:
        assert rule.script is not None
        bindings = self._formula_bindings(event)
        payload: dict[str, Any] = {}
        for name, parser in parse_script(rule.script):
            payload[name] = parser.evaluate({**bindings, **payload})
        return rule.message_type or event.type, payload, 1.0

    def _apply_ai(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float]:
        if self._client is None:
            raise InterpretationError(f"rule {rule.id!r} needs an interpretation client; none is configured")
        prompt = render_template(rule.prompt or "", {"event": event.as_binding(), "text": event_text(event)})
        answer = self._client.interpret(event, prompt, rule)
        if answer.confidence < rule.confidence_threshold:
            raise InterpretationError(
                f"confidence {answer.confidence:.2f} below threshold {rule.confidence_threshold:.2f}"
            )
        return answer.message_type, dict(answer.payload), answer.confidence

    def _apply_passthrough(self, rule: InterpretationRule, event: FSMEvent) -> tuple[str, dict[str, Any], float]:
        raw = event.raw_data
        if rule.field_mapping:
            payload: dict[str, Any] = {}
            for target, source in rule.field_mapping.items():
                found, value = _lookup_path(raw, source)
                if found:
                    payload[target] = value
        elif isinstance(raw, Mapping):
            payload = dict(raw)
        else:
            payload = {"value": raw}
        return rule.message_type or event.type, payload, 1.0
