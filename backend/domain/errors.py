"""Exception hierarchy for measurement and progress errors."""

from typing import Iterable, List, Optional


class RomError(Exception):
    """Base exception for range-of-motion engine errors."""


class SessionStateError(RomError):
    """Raised when a session operation is not valid for the session's state."""

    def __init__(self, message: str, session_id: Optional[str] = None, not_found: bool = False):
        super().__init__(message)
        self.session_id = session_id
        self.not_found = not_found


class IncompleteSessionError(SessionStateError):
    """Raised when completing a session that is missing phase results."""

    def __init__(self, session_id: str, missing_phases: Iterable[str]):
        self.missing_phases: List[str] = list(missing_phases)
        super().__init__(
            f"Incomplete session {session_id}: missing {', '.join(self.missing_phases)}",
            session_id=session_id,
        )


class ValidationError(RomError, ValueError):
    """Raised when record input fails validation."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class PersistenceError(RomError):
    """Raised by stores when a read or write fails."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
