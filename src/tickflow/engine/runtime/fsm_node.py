"""FSMProcessNode runtime.

Arriving tokens become FSM events. On evaluation every pending event is
interpreted into a message (when the node has interpretation rules) and
offered to the transition matcher, message triggers first and raw event
triggers second. One spontaneous pass then checks timers, conditions and
queued manual triggers. Each executed transition logs ``fsm_transition``
and routes the effects of its exit and entry actions.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any

from tickflow.contracts.enums import ActivityAction, EventSourceType, NodeKind
from tickflow.contracts.errors import FormulaError
from tickflow.contracts.states import FSMProcessNodeState
from tickflow.contracts.tokens import FSMEvent, FSMMessage, Token
from tickflow.core.scenario import FSMProcessNode, FSMTransition, OutputPort
from tickflow.engine.context import SimulationContext
from tickflow.engine.fsm import TOKEN_RECEIVED, FSMEngine
from tickflow.engine.interpretation import InterpretationEngine
from tickflow.engine.runtime.base import BaseRuntime
from tickflow.engine.runtime.process import match_input, token_bindings

DEFAULT_INPUT = "default"
DEFAULT_BUFFER_SIZE = 1000


def extract_fsm_outputs(config: FSMProcessNode) -> dict[str, tuple[str, str | None]]:
    """Output ports of an FSM node, including ones only named by emit actions.

    Declared ports map to their destination; ports that only appear as an
    emit target are created disconnected.
    """
    outputs: dict[str, tuple[str, str | None]] = {}
    for port in config.outputs:
        name = port.name or port.destination_node_id
        outputs[name] = (port.destination_node_id, port.destination_input_name)
    for target in config.fsm.emit_targets():
        outputs.setdefault(target, ("", None))
    return outputs


def token_to_event(token: Token, *, input_name: str, now: float, feedback: bool) -> FSMEvent:
    """Wrap a delivered token as a raw FSM event.

    The event type is the payload's ``type`` field when present.
    """
    raw: Any = token.data() if token.payload else token.value
    return FSMEvent(
        event_id=f"{token.token_id}:event",
        type=str(token.payload.get("type", TOKEN_RECEIVED)),
        timestamp=now,
        raw_data=raw,
        source_type=EventSourceType.FEEDBACK if feedback else EventSourceType.EXTERNAL,
        metadata={"originNodeId": token.origin_node_id, "feedbackDepth": token.feedback_depth},
        input_name=input_name,
        token=token,
    )


def implicit_message(event: FSMEvent) -> FSMMessage:
    """Message used when a node has no interpretation rules: the event, verbatim."""
    payload = dict(event.raw_data) if isinstance(event.raw_data, dict) else {"value": event.raw_data}
    return FSMMessage(
        message_id=f"{event.event_id}:msg",
        type=event.type,
        timestamp=event.timestamp,
        payload=payload,
        source_event_id=event.event_id,
    )


class FSMProcessNodeRuntime(BaseRuntime):
    kind = NodeKind.FSM_PROCESS_NODE

    def initial_state(self, config: FSMProcessNode, ctx: SimulationContext) -> FSMProcessNodeState:
        ctx.feedback.set_config(ctx.qualify(config.node_id), config.fsm.feedback_config)
        engine, _ = ctx.fsm_support(config.node_id, config.fsm)
        initial = engine.initial_state
        return FSMProcessNodeState(
            node_id=config.node_id,
            phase=initial,
            current_fsm_state=initial,
            fsm_variables=copy.deepcopy(dict(config.fsm.variables)),
            input_buffers={inp.key: [] for inp in config.inputs},
            outputs=extract_fsm_outputs(config),
        )

    def receive(
        self,
        ctx: SimulationContext,
        config: FSMProcessNode,
        state: FSMProcessNodeState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        inp = match_input(config.inputs, token)
        if inp is not None:
            key = inp.key
        elif token.destination_input and config.buffer_limit(token.destination_input) is not None:
            key = token.destination_input
        else:
            key = DEFAULT_INPUT

        limit = config.buffer_limit(key) or DEFAULT_BUFFER_SIZE
        buffer = state.input_buffers.setdefault(key, [])
        buffer.append(token)
        if len(buffer) > limit:
            del buffer[0]

        event = token_to_event(token, input_name=key, now=ctx.now, feedback=feedback)
        state.pending_events.append(event)
        ctx.log(
            state,
            ActivityAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"Event {event.type} from {token.origin_node_id} on {key}",
        )

    def _bindings(
        self,
        ctx: SimulationContext,
        config: FSMProcessNode,
        state: FSMProcessNodeState,
        event: FSMEvent | None = None,
        message: FSMMessage | None = None,
    ) -> dict[str, Any]:
        latest = {
            inp.alias: state.input_buffers[inp.key][-1]
            for inp in config.inputs
            if state.input_buffers.get(inp.key)
        }
        bindings = {**state.fsm_variables, **token_bindings(latest)}
        bindings["variables"] = dict(state.fsm_variables)
        token = event.token if event is not None else None
        bindings["input"] = {"data": token.data(), "value": token.value} if token is not None else None
        bindings["event"] = event.as_binding() if event is not None else None
        bindings["message"] = message.as_binding() if message is not None else None
        bindings["currentState"] = state.current_fsm_state
        bindings["timeInState"] = ctx.now - state.state_entered_at
        return bindings

    def evaluate(self, ctx: SimulationContext, config: FSMProcessNode, state: FSMProcessNodeState) -> None:
        engine, interpreter = ctx.fsm_support(config.node_id, config.fsm)

        events, state.pending_events = state.pending_events, []
        for event in events:
            message = self._interpret(ctx, state, interpreter, event)
            bindings = self._bindings(ctx, config, state, event, message)
            try:
                transition = None
                if message is not None:
                    transition = engine.select_for_message(state.current_fsm_state, message, bindings)
                if transition is None:
                    transition = engine.select_for_event(state.current_fsm_state, event, bindings)
            except FormulaError as e:
                ctx.log(state, ActivityAction.FORMULA_ERROR, details=f"{e.formula}: {e}")
                continue
            if transition is not None:
                parents = [event.token] if event.token is not None else []
                self._execute(ctx, state, engine, transition, bindings, parents)

        manual, state.pending_manual = state.pending_manual, []
        bindings = self._bindings(ctx, config, state)
        try:
            transition = engine.select_spontaneous(
                state.current_fsm_state,
                elapsed=ctx.now - state.state_entered_at,
                bindings=bindings,
                manual=manual,
            )
        except FormulaError as e:
            ctx.log(state, ActivityAction.FORMULA_ERROR, details=f"{e.formula}: {e}")
            return
        if transition is not None:
            self._execute(ctx, state, engine, transition, bindings, [])

    def _interpret(
        self,
        ctx: SimulationContext,
        state: FSMProcessNodeState,
        interpreter: InterpretationEngine,
        event: FSMEvent,
    ) -> FSMMessage | None:
        if not interpreter.rules:
            return implicit_message(event)
        result = interpreter.interpret(event)
        if result.status == "error":
            ctx.log(state, ActivityAction.ERROR, details=f"Interpretation rule {result.rule_id}: {result.error}")
            return None
        if result.message is None:
            return None
        ctx.log(
            state,
            ActivityAction.MESSAGE_INTERPRETED,
            value=result.message.type,
            details=f"{event.type} → {result.message.type} (rule {result.rule_id})",
        )
        return result.message

    def _execute(
        self,
        ctx: SimulationContext,
        state: FSMProcessNodeState,
        engine: FSMEngine,
        transition: FSMTransition,
        bindings: dict[str, Any],
        parents: Iterable[Token],
    ) -> None:
        outcome = engine.execute(transition, state.fsm_variables, bindings)
        ctx.log(state, ActivityAction.FSM_TRANSITION, value=outcome.to_state, details=outcome.details)
        state.current_fsm_state = outcome.to_state
        state.phase = outcome.to_state
        state.state_entered_at = ctx.now
        state.last_transition_time = ctx.now

        clean = True
        parents = list(parents)
        for effect in outcome.effects:
            if effect.kind == "log":
                ctx.log(state, ActivityAction.FSM_LOG, details=effect.text)
            elif effect.kind == "error":
                clean = False
                details = f"{effect.formula}: {effect.text}" if effect.formula else effect.text
                ctx.log(state, ActivityAction.FORMULA_ERROR, details=details)
            else:
                assert effect.target is not None
                self._emit(ctx, state, effect.target, effect.value, parents)
        if clean:
            ctx.clear_error(state)

    def _emit(
        self,
        ctx: SimulationContext,
        state: FSMProcessNodeState,
        target: str,
        value: Any,
        parents: list[Token],
    ) -> None:
        destination, input_name = state.outputs.setdefault(target, ("", None))
        if not destination:
            ctx.log(state, ActivityAction.EMITTING, value=value, details=f"Output {target} is not connected")
            return
        port = OutputPort(name=target, destination_node_id=destination, destination_input_name=input_name)
        token = ctx.emit(state, port, value, parents=parents)
        if token is not None:
            ctx.log(
                state,
                ActivityAction.TOKEN_EMITTED,
                value=value,
                details=f"Token {token.token_id} via {target} to {destination}",
            )
