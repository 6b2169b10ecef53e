from __future__ import annotations


class ImpressionismError(Exception):
    """Base class for failures raised by the activation engine."""


class LoadError(ImpressionismError):
    """A ruleset failed to load or validate. Blocks use of that ruleset."""

    def __init__(self, ruleset: str, message: str) -> None:
        super().__init__(message)
        self.ruleset = ruleset


class EvalError(ImpressionismError):
    """A ruleset call raised, hit a sandbox boundary, or ran out of time."""

    def __init__(
        self,
        message: str,
        *,
        ruleset: str | None = None,
        phase: str | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.ruleset = ruleset
        self.phase = phase
        self.session_id = session_id

    def __str__(self) -> str:
        base = super().__str__()
        parts = []
        if self.ruleset:
            parts.append(f"ruleset={self.ruleset}")
        if self.phase:
            parts.append(f"phase={self.phase}")
        if self.session_id:
            parts.append(f"session={self.session_id}")
        if not parts:
            return base
        return f"{base} ({', '.join(parts)})"


class SkillIndexError(ImpressionismError):
    """A single skill file could not be parsed or embedded."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.reason = message


class StoreError(ImpressionismError):
    """The database is unreachable or in an unusable state."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
