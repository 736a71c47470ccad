"""
Scheduling Error Types

Exceptions raised by the scheduling core and its Gmail, Calendar and
classifier collaborators.
"""


class SchedulingError(Exception):
    """Base class for all scheduling errors."""


class ConfigurationError(SchedulingError):
    """Missing credentials or an unavailable collaborator. Fatal to a run."""


class TransientExternalError(SchedulingError):
    """A single call to the classifier, Gmail or Calendar failed."""


class MalformedResponseError(TransientExternalError):
    """Classifier output could not be parsed into the expected schema."""


class ValidationError(SchedulingError):
    """Input or result rejected before anything is sent or booked."""
