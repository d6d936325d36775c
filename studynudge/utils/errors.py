"""Reminder scheduling error types."""


class ReminderError(RuntimeError):
    """Base class for scheduling errors."""


class InputError(ReminderError, ValueError):
    """The task cannot be scheduled (missing or unparsable due date, unknown task)."""


class BackendUnavailable(ReminderError):
    """A delivery backend call failed, timed out or was refused."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class PersistenceFailure(ReminderError):
    """The offline queue could not store an entry."""


class AnalyticsFailure(ReminderError):
    """An analytics record could not be written."""
