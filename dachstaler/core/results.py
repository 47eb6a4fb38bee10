"""Result shape returned by every command handler."""

from dataclasses import dataclass, field
from typing import Any, Dict

STATUS_OK = "ok"
STATUS_REJECTED = "rejected"
STATUS_ERROR = "error"


@dataclass
class CommandResult:
    """
    `message` is the plain-text reply for chat; `side_effects` records what
    changed (balance, items granted, ...) for callers that want structure.
    """

    status: str
    message: str
    side_effects: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


def success(message: str, **side_effects) -> CommandResult:
    return CommandResult(STATUS_OK, message, side_effects)


def rejected(message: str, **side_effects) -> CommandResult:
    return CommandResult(STATUS_REJECTED, message, side_effects)


def failed(message: str) -> CommandResult:
    return CommandResult(STATUS_ERROR, message)
