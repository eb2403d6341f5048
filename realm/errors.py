"""Error taxonomy shared by the world engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class RejectionReason(str, Enum):
    """Why an action was refused before any state changed."""

    OUT_OF_BOUNDS = "out_of_bounds"
    UNEXPLORED = "unexplored"
    IMPASSABLE = "impassable"
    UNREACHABLE = "unreachable"
    NO_WORLD = "no_world"
    UNKNOWN_OBJECT = "unknown_object"
    NOT_DISCOVERED = "not_discovered"
    PORTAL_UNLINKED = "portal_unlinked"
    LEVEL_REQUIREMENT = "level_requirement"
    SLOT_EMPTY = "slot_empty"
    INVALID_SLOT = "invalid_slot"
    UNKNOWN_CHARACTER = "unknown_character"
    NOT_INTERACTIVE = "not_interactive"


class EngineError(Exception):
    """Base class for recoverable engine conditions."""


class ValidationError(EngineError, ValueError):
    """Raised when an action fails a precondition."""

    def __init__(
        self,
        reason: RejectionReason,
        message: str,
        *,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        self.details = dict(details or {})
        super().__init__(message)


class InsufficientResource(EngineError, ValueError):
    """Raised when an action costs more energy or gold than is available."""

    def __init__(self, resource: str, required: int, available: int) -> None:
        self.resource = resource
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            f"Not enough {resource}: required {self.required}, available {self.available}"
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class PersistenceFailure(EngineError, RuntimeError):
    """Raised by save services when a snapshot could not be written or read."""

    def __init__(self, player_id: str, message: str) -> None:
        self.player_id = str(player_id)
        super().__init__(f"Persistence failed for {self.player_id}: {message}")


__all__ = [
    "EngineError",
    "InsufficientResource",
    "PersistenceFailure",
    "RejectionReason",
    "ValidationError",
]
