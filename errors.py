class NotFound(ValueError):
    """A referenced id does not resolve."""


class ValidationError(ValueError):
    """Malformed input rejected before any write."""


class DuplicateResourceError(ValidationError):
    pass
