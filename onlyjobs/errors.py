"""Exceptions raised by the correlation core."""


class OnlyJobsError(Exception):
    """Base class for all OnlyJobs errors."""


class TransientClassificationError(OnlyJobsError):
    """The external classifier or matcher failed for a single unit."""


class IllegalStageTransition(OnlyJobsError):
    """A pipeline record was asked to move outside the forward stage order."""

    def __init__(self, message_id: str, current: str, target: str, reason: str = ""):
        self.message_id = message_id
        self.current = current
        self.target = target
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Illegal stage transition for {message_id}: {current} -> {target}{detail}"
        )


class UniquenessConflict(OnlyJobsError):
    """A second job for a thread or a duplicate pipeline record was attempted.

    Retryable: the caller should usually attach to the existing row instead.
    """

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"Duplicate {kind}: {key}")


class MalformedInput(OnlyJobsError):
    """An input record is missing required fields or cannot be parsed."""
