class ServiceError(Exception):
    """General exception class for the service layer."""
    pass

class NotFoundError(ServiceError):
    """A card id, token, user or team has no matching record."""
    pass

class WriteError(ServiceError):
    """Persisting a log, cache record, link status or directory entry failed."""
    pass

class LinkStateError(ServiceError):
    """A link request was asked to move backwards or skip a state."""
    pass

class DuplicateCardError(ServiceError):
    """The card id is already owned by another user."""
    pass
