"""Exceptions raised by the barpath service."""


class BarpathError(Exception):
    """Base class for barpath errors."""


class SessionNotFoundError(BarpathError):
    """No live session is registered under the requested id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ReportGenerationError(BarpathError):
    """
    Writing a report failed.

    Recoverable: the session keeps its completed reps so the report can be
    generated again without re-recording the workout.
    """

    def __init__(self, message: str, rep_count: int = 0):
        super().__init__(message)
        self.rep_count = rep_count
