"""Domain errors raised by the exam-taking services.

Routers translate these into HTTP responses; none of them is fatal to the
process, they are all scoped to a single attempt.
"""


class ExamilyError(Exception):
    """Base class for attempt / exam domain errors."""


class NotFoundError(ExamilyError):
    """Exam or attempt does not exist."""


class PersistenceError(ExamilyError):
    """The attempt store failed to write a record."""


class AttemptCompletedError(ExamilyError):
    """Mutation attempted on a completed (frozen) attempt."""
