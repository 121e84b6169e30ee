# src/tickflow/core/fsl.py
"""FSL: the textual authoring syntax for FSM definitions.

FSL and the JSON form are two codecs of the same FSMDefinition; nothing in
the engine consumes FSL directly.

Syntax:
    initial idle;
    idle 'start' -> running;
    running 'stop' -> idle [priority=50];
    on_entry running {
        emit(result, input.data.value * 2);
        log("running");
    }

Lines starting with ``#`` or ``//`` are comments. Parsing is best-effort:
every statement that cannot be understood is reported with its line number
and parsing carries on with the next statement.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from pydantic import ValidationError

from tickflow.contracts.enums import FSMActionKind, FSMStateType
from tickflow.core.scenario import (
    FSMAction,
    FSMDefinition,
    FSMStateDef,
    FSMTransition,
    MessageTrigger,
)

_TRANSITION = re.compile(r"^(\w+)\s+'([^']+)'\s*->\s*(\w+)(?:\s*\[\s*priority\s*=\s*(-?\d+)\s*\])?$")
_INITIAL = re.compile(r"^initial\s+(\w+)$")
_BLOCK_HEAD = re.compile(r"^on_(entry|exit)\s+(\w+)$")
_EMIT = re.compile(r"^emit\(\s*(\w+)\s*,\s*(.+)\)$", re.DOTALL)
_LOG = re.compile(r'^log\(\s*"((?:[^"\\]|\\.)*)"\s*\)$')


@dataclass(frozen=True)
class FSLError:
    """One statement the parser could not use."""

    line: int
    text: str
    message: str

    def __str__(self) -> str:
        return f"line {self.line}: {self.message}: {self.text!r}"


@dataclass
class FSLParseResult:
    """Parsed definition plus every problem found along the way."""

    definition: FSMDefinition | None
    errors: list[FSLError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.definition is not None and not self.errors


@dataclass
class _Statement:
    line: int
    text: str
    body: str | None = None
    body_line: int = 0


def _split_statements(text: str) -> list[_Statement]:
    """Split on top-level ``;`` and ``{...}`` blocks, ignoring quoted text."""
    statements: list[_Statement] = []
    buf: list[str] = []
    line = 1
    start_line = 1
    quote: str | None = None
    i = 0
    while i < len(text):
        ch = text[i]
        if not buf and ch.isspace():
            if ch == "\n":
                line += 1
            start_line = line
            i += 1
            continue
        if quote:
            if ch == "\\" and i + 1 < len(text):
                buf.append(text[i : i + 2])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch in ("#", "/") and not "".join(buf).strip() and (ch == "#" or text.startswith("//", i)):
            end = text.find("\n", i)
            i = len(text) if end == -1 else end
            buf = []
            continue
        elif ch == ";":
            statements.append(_Statement(start_line, "".join(buf).strip()))
            buf = []
            start_line = line
            i += 1
            continue
        elif ch == "{":
            close = _matching_brace(text, i)
            body = text[i + 1 : close] if close != -1 else text[i + 1 :]
            statements.append(_Statement(start_line, "".join(buf).strip(), body=body, body_line=line))
            line += body.count("\n")
            buf = []
            i = len(text) if close == -1 else close + 1
            start_line = line
            # Optional trailing ';' after a block
            rest = text[i:].lstrip(" \t")
            if rest.startswith(";"):
                i = len(text) - len(rest) + 1
            continue
        if ch == "\n":
            line += 1
        buf.append(ch)
        i += 1
    if "".join(buf).strip():
        statements.append(_Statement(start_line, "".join(buf).strip()))
    return statements


def _matching_brace(text: str, open_index: int) -> int:
    quote: str | None = None
    for j in range(open_index + 1, len(text)):
        ch = text[j]
        if quote:
            if ch == quote and text[j - 1] != "\\":
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "}":
            return j
    return -1


def _split_actions(body: str) -> list[str]:
    """Split a block body on ``;`` outside quotes and parentheses."""
    parts: list[str] = []
    buf: list[str] = []
    depth = 0
    quote: str | None = None
    for ch in body:
        if quote:
            if ch == quote and (not buf or buf[-1] != "\\"):
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == ";" and depth == 0:
            parts.append("".join(buf).strip())
            buf = []
            continue
        buf.append(ch)
    if "".join(buf).strip():
        parts.append("".join(buf).strip())
    return [p for p in parts if p]


def _parse_action(text: str) -> FSMAction:
    """Parse one ``emit(...)`` or ``log("...")`` call.

    Raises:
        ValueError: If the action is not understood or its formula is invalid
    """
    emit = _EMIT.match(text)
    if emit:
        try:
            return FSMAction(action=FSMActionKind.EMIT, target=emit.group(1), formula=emit.group(2).strip())
        except ValidationError as e:
            raise ValueError(e.errors()[0]["msg"]) from e
    log = _LOG.match(text)
    if log:
        return FSMAction(action=FSMActionKind.LOG, value=json.loads(f'"{log.group(1)}"'))
    raise ValueError("Expected emit(output, formula) or log(\"message\")")


def parse_fsl(text: str) -> FSLParseResult:
    """Parse FSL text into an FSMDefinition.

    Args:
        text: FSL source

    Returns:
        FSLParseResult with the definition (None if no state was found) and
        every unparsable statement
    """
    errors: list[FSLError] = []
    state_order: dict[str, None] = {}
    transitions: list[FSMTransition] = []
    entry_actions: dict[str, list[FSMAction]] = {}
    exit_actions: dict[str, list[FSMAction]] = {}
    initial: str | None = None

    for stmt in _split_statements(text):
        if stmt.body is not None:
            head = _BLOCK_HEAD.match(stmt.text)
            if not head:
                errors.append(FSLError(stmt.line, stmt.text, "Expected 'on_entry <state>' or 'on_exit <state>'"))
                continue
            hook, state = head.groups()
            state_order.setdefault(state, None)
            target = entry_actions if hook == "entry" else exit_actions
            for action_text in _split_actions(stmt.body):
                try:
                    target.setdefault(state, []).append(_parse_action(action_text))
                except ValueError as e:
                    errors.append(FSLError(stmt.body_line, action_text, str(e)))
            continue

        if not stmt.text:
            continue
        match = _INITIAL.match(stmt.text)
        if match:
            initial = match.group(1)
            state_order.setdefault(initial, None)
            continue
        match = _TRANSITION.match(stmt.text)
        if match:
            source, trigger, dest, priority = match.groups()
            state_order.setdefault(source, None)
            state_order.setdefault(dest, None)
            transitions.append(
                FSMTransition(
                    from_state=source,
                    to=dest,
                    trigger=MessageTrigger(message_type=trigger),
                    priority=int(priority) if priority is not None else 100,
                )
            )
            continue
        errors.append(FSLError(stmt.line, stmt.text, "Unrecognized statement"))

    if not state_order:
        return FSLParseResult(definition=None, errors=errors)

    if initial is None:
        initial = "idle" if "idle" in state_order else next(iter(state_order))

    states = [
        FSMStateDef(
            name=name,
            type=FSMStateType.INITIAL if name == initial else FSMStateType.INTERMEDIATE,
            on_entry=entry_actions.get(name, []),
            on_exit=exit_actions.get(name, []),
        )
        for name in state_order
    ]
    definition = FSMDefinition(states=states, transitions=transitions, initial_state=initial)
    return FSLParseResult(definition=definition, errors=errors)


def _render_action(action: FSMAction) -> str:
    if action.action == FSMActionKind.EMIT:
        formula = action.formula if action.formula is not None else json.dumps(action.value)
        return f"emit({action.target}, {formula});"
    if action.action == FSMActionKind.LOG:
        return f"log({json.dumps(str(action.value or action.formula or ''))});"
    return f"# {action.action.value} {action.target} not expressible in FSL"


def render_fsl(definition: FSMDefinition) -> str:
    """Render an FSMDefinition as FSL text.

    Only message triggers and emit/log actions have an FSL form; anything
    else is written as a comment so the output still parses.
    """
    lines = [f"initial {definition.entry_state.name};"]
    for t in definition.transitions:
        source = definition.resolve_state(t.from_state)
        dest = definition.resolve_state(t.to)
        src_name = source.name if source else t.from_state
        dest_name = dest.name if dest else t.to
        if isinstance(t.trigger, MessageTrigger) and t.trigger.condition is None:
            suffix = "" if t.priority == 100 else f" [priority={t.priority}]"
            lines.append(f"{src_name} '{t.trigger.message_type}' -> {dest_name}{suffix};")
        else:
            lines.append(f"# {src_name} -> {dest_name} on {t.describe_trigger()} not expressible in FSL")
    for state in definition.states:
        for hook, actions in (("entry", state.on_entry), ("exit", state.on_exit)):
            if not actions:
                continue
            lines.append(f"on_{hook} {state.name} {{")
            lines.extend(f"    {_render_action(a)}" for a in actions)
            lines.append("}")
    return "\n".join(lines) + "\n"
