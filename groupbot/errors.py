"""
Error taxonomy for the assistant core.
"""


class GroupBotError(Exception):
    """Base class for all errors raised by the assistant core."""


class BoundaryError(GroupBotError):
    """The completion provider failed; callers substitute a fallback reply."""


class BoundaryTimeout(BoundaryError):
    """The completion provider did not answer within the deadline."""


class BoundaryMalformed(BoundaryError):
    """The completion provider answered without usable content."""


class PersistenceFailure(GroupBotError):
    """A read or write to MongoDB failed."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class AuthorizationDenied(GroupBotError):
    """A privileged operation was attempted by a non-administrator."""


class MalformedInput(GroupBotError):
    """A payload had the wrong arity or shape; the message is a format hint."""

    def __init__(self, hint: str):
        super().__init__(hint)
        self.hint = hint
