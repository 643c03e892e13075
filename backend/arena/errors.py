"""Error taxonomy shared by the storage layer and the game engine."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class GameError(Exception):
    """Base class for every failure the engine reports to a client."""

    code = 'GAME_ERROR'

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.code, 'message': self.message}


class NotFound(GameError):
    """Unknown question, answer or contestant id."""

    code = 'NOT_FOUND'


class InvalidState(GameError):
    """Operation attempted outside its allowed lifecycle state."""

    code = 'INVALID_STATE'


class InvalidInput(GameError):
    """Malformed command arguments."""

    code = 'INVALID_INPUT'


class DuplicateSubmission(GameError):
    """Second answer for a (question, contestant) pair."""

    code = 'DUPLICATE_SUBMISSION'


class PersistenceFailure(GameError):
    """The storage collaborator failed. Always surfaced to the caller."""

    code = 'PERSISTENCE_FAILURE'


@dataclass
class Result:
    """Outcome of a public engine operation.

    Expected failures (not found, wrong state, duplicate) come back as a
    failed Result; persistence failures are raised instead.
    """

    ok: bool
    error: Optional[GameError] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data) -> 'Result':
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: GameError) -> 'Result':
        return cls(ok=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {'success': True, **self.data}
        return {'success': False, **self.error.to_dict()}
