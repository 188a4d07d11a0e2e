from fastapi import HTTPException, status

from ...services.errors import (
    DuplicateCardError, LinkStateError, NotFoundError, ServiceError, WriteError
)


def http_error(error: ServiceError) -> HTTPException:
    """Maps a service-layer exception onto the HTTP status the routers return."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (LinkStateError, DuplicateCardError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, WriteError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
