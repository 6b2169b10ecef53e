"""Per-event skill activation.

One hook event runs through ``idle -> context_built -> rule_evaluated ->
reconciled -> idle``. Each ruleset call gets its own freshly sandboxed Lua
state; a call that fails contributes nothing to the reconciliation, and the
reconciliation itself is a single store transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import ImpressionismConfig
from .errors import EvalError
from .lua.api import HostApi
from .lua.ruleset import EvaluationContext, Ruleset, evaluate_activation, evaluate_deactivation
from .lua.runtime import SandboxedRuntime
from .semantic import Embedder, embed_text
from .store import HookType, MessageLog, SessionSkill, SkillStore

logger = logging.getLogger(__name__)

ACTIVATION = "evaluate_activation"
DEACTIVATION = "evaluate_deactivation"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    CONTEXT_BUILT = "context_built"
    RULE_EVALUATED = "rule_evaluated"
    RECONCILED = "reconciled"


@dataclass
class HookEvent:
    session_id: str
    hook_type: HookType
    workspace_path: str = ""
    message: str | None = None
    tool_name: str | None = None

    @classmethod
    def from_hook_payload(
        cls,
        hook_type: HookType,
        session_id: str,
        payload: dict[str, Any] | None = None,
        *,
        workspace_path: str | None = None,
    ) -> HookEvent:
        payload = payload or {}
        message = None
        tool_name = None
        if hook_type is HookType.USER_PROMPT_SUBMIT:
            message = _as_text(payload.get("prompt"))
        elif hook_type is HookType.POST_TOOL_USE:
            tool_name = _as_text(payload.get("tool_name"))
            tool_input = payload.get("tool_input")
            if isinstance(tool_input, dict):
                message = _as_text(
                    tool_input.get("description")
                    or tool_input.get("command")
                    or tool_input.get("file_path")
                    or tool_input.get("pattern")
                )
        elif hook_type is HookType.STOP:
            message = _as_text(payload.get("last_assistant_message"))
        return cls(
            session_id=session_id,
            hook_type=hook_type,
            workspace_path=workspace_path or _as_text(payload.get("cwd")) or "",
            message=message,
            tool_name=tool_name,
        )


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


@dataclass
class SelectionResult:
    session_id: str
    hook_type: HookType
    activated: list[str] = field(default_factory=list)
    already_active: list[str] = field(default_factory=list)
    deactivated: list[str] = field(default_factory=list)
    not_active: list[str] = field(default_factory=list)
    active: list[SessionSkill] = field(default_factory=list)
    errors: list[EvalError] = field(default_factory=list)
    sequence: int | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "hook_type": self.hook_type.value,
            "activated": self.activated,
            "already_active": self.already_active,
            "deactivated": self.deactivated,
            "not_active": self.not_active,
            "active": [
                {
                    "skill_id": row.skill_id,
                    "activated_at": row.activated_at,
                    "activation_reason": row.activation_reason,
                }
                for row in self.active
            ],
            "errors": [str(err) for err in self.errors],
            "sequence": self.sequence,
        }


def dedupe(identifiers: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for identifier in identifiers:
        if identifier in seen:
            continue
        seen.add(identifier)
        unique.append(identifier)
    return unique


class ActivationOrchestrator:
    def __init__(
        self,
        store: SkillStore,
        ruleset: Ruleset,
        config: ImpressionismConfig | None = None,
        *,
        embedder: Embedder | None = None,
    ) -> None:
        self.store = store
        self.ruleset = ruleset
        self.config = config or ImpressionismConfig()
        self.embedder = embedder
        self.state = OrchestratorState.IDLE

    def _new_runtime(self, api: HostApi) -> SandboxedRuntime:
        return SandboxedRuntime(
            api,
            timeout_ms=self.config.eval_timeout_ms,
            max_memory=self.config.lua_max_memory_bytes,
        )

    def _new_api(self) -> HostApi:
        return HostApi(
            self.store,
            embedder=self.embedder,
            params=self.config.params,
            ruleset_name=self.ruleset.name,
        )

    def validate_ruleset(self) -> None:
        """Raise LoadError if the ruleset cannot be used; never calls its functions."""

        self.ruleset.validate(self._new_runtime(self._new_api()))

    def build_context(self, event: HookEvent) -> EvaluationContext:
        self.store.ensure_session(event.session_id, event.workspace_path)
        message = event.message
        if message is None:
            message = self.store.latest_message_text(event.session_id)
        self.state = OrchestratorState.CONTEXT_BUILT
        return EvaluationContext(
            session_id=event.session_id,
            hook_type=event.hook_type,
            recent_message=message,
            tool_name=event.tool_name,
            workspace_path=event.workspace_path or None,
        )

    def _run_phase(
        self, phase: str, context: EvaluationContext
    ) -> tuple[list[str] | None, HostApi, EvalError | None]:
        # A fresh runtime per call: nothing a script stashes survives it.
        api = self._new_api()
        try:
            runtime = self._new_runtime(api)
            exports = self.ruleset.load(runtime)
            if phase == ACTIVATION:
                ids = evaluate_activation(runtime, exports, context, self.ruleset.name)
            else:
                ids = evaluate_deactivation(runtime, exports, context, self.ruleset.name)
        except EvalError as exc:
            if exc.session_id is None:
                exc = EvalError(
                    exc.args[0],
                    ruleset=self.ruleset.name,
                    phase=phase,
                    session_id=context.session_id,
                )
            logger.warning("ruleset evaluation failed: %s", exc)
            return None, api, exc
        return dedupe(ids), api, None

    def _activation_reason(self, identifier: str, context: EvaluationContext, api: HostApi) -> str:
        parts = [f"ruleset={self.ruleset.name}", f"hook={context.hook_type.value}"]
        similarity = api.similarity_for(identifier)
        if similarity is not None:
            parts.append(f"similarity={similarity:.3f}")
        if api.notes:
            parts.append(f"note={api.notes[-1]}")
        return " ".join(parts)

    def _active_aliases(self, session_id: str) -> dict[str, str]:
        aliases: dict[str, str] = {}
        for row in self.store.get_active_skills(session_id):
            aliases[row.skill_id] = row.skill_id
            skill = self.store.find_skill(row.skill_id)
            if skill is not None:
                aliases.setdefault(skill.id, row.skill_id)
                aliases.setdefault(skill.name, row.skill_id)
        return aliases

    def handle_event(self, event: HookEvent, *, deactivate_only: bool = False) -> SelectionResult:
        result = SelectionResult(session_id=event.session_id, hook_type=event.hook_type)
        self.state = OrchestratorState.IDLE
        self.validate_ruleset()
        context = self.build_context(event)

        activations: list[tuple[str, str | None]] = []
        if not deactivate_only:
            ids, api, error = self._run_phase(ACTIVATION, context)
            if error is not None:
                result.errors.append(error)
            else:
                aliases = self._active_aliases(event.session_id)
                for identifier in ids or []:
                    if identifier in aliases:
                        result.already_active.append(aliases[identifier])
                        continue
                    activations.append(
                        (identifier, self._activation_reason(identifier, context, api))
                    )

        deactivations: list[str] = []
        ids, _, error = self._run_phase(DEACTIVATION, context)
        if error is not None:
            result.errors.append(error)
        else:
            aliases = self._active_aliases(event.session_id)
            deactivations = dedupe([aliases.get(identifier, identifier) for identifier in ids or []])
        self.state = OrchestratorState.RULE_EVALUATED

        outcome = self.store.apply_reconciliation(event.session_id, activations, deactivations)
        result.activated = outcome["activated"]
        result.already_active = dedupe(result.already_active + outcome["already_active"])
        result.deactivated = outcome["deactivated"]
        result.not_active = outcome["not_active"]
        result.active = self.store.get_active_skills(event.session_id)
        self.state = OrchestratorState.RECONCILED

        message = self._log_event(event, result)
        result.sequence = message.sequence
        self.state = OrchestratorState.IDLE
        logger.info(
            "session %s %s: +%d -%d active=%d errors=%d",
            event.session_id,
            event.hook_type.value,
            len(result.activated),
            len(result.deactivated),
            len(result.active),
            len(result.errors),
        )
        return result

    def _log_event(self, event: HookEvent, result: SelectionResult) -> MessageLog:
        return record_event(
            self.store,
            event,
            active_skills=[row.skill_id for row in result.active],
            preview_chars=self.config.content_preview_chars,
            embedder=self.embedder,
        )


def record_event(
    store: SkillStore,
    event: HookEvent,
    *,
    active_skills: list[str] | None = None,
    preview_chars: int = 500,
    embedder: Embedder | None = None,
) -> MessageLog:
    """Append one hook event to the session history.

    When ``active_skills`` is omitted the current active set is snapshotted.
    """

    store.ensure_session(event.session_id, event.workspace_path)
    if active_skills is None:
        active_skills = [row.skill_id for row in store.get_active_skills(event.session_id)]
    preview = None
    if event.message:
        preview = event.message[:preview_chars]
    content_embedding: list[float] | None = None
    if preview:
        try:
            content_embedding = embed_text(preview, embedder) or None
        except Exception as exc:
            logger.warning("message embedding failed", exc_info=exc)
    return store.append_message(
        session_id=event.session_id,
        role=event.hook_type.role,
        event_type=event.hook_type.event_name,
        tool_name=event.tool_name,
        content_preview=preview,
        content_embedding=content_embedding,
        active_skills=active_skills,
    )
