class ValidationError(ValueError):
    """Raised when reps, weight or another input value is rejected.

    ``exercise`` and ``set_index`` identify the first failing cell when the
    error comes from a batch operation; ``errors`` lists every failure.
    """

    def __init__(
        self,
        message: str,
        exercise: str | None = None,
        set_index: int | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.exercise = exercise
        self.set_index = set_index
        self.errors = errors or [message]


class NotFoundError(LookupError):
    """Raised when a session, exercise or history entry id does not exist."""


class PersistenceError(RuntimeError):
    """Wraps a failure raised by a save or history collaborator."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class InvalidTransitionError(RuntimeError):
    """Raised when an operation is not allowed in the controller's state."""
