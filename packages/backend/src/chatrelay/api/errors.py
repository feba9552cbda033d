"""Service error → HTTP status translation.

Learn: Services raise domain errors and know nothing about HTTP. Routes
wrap service calls and re-raise through http_error(), so one table decides
every status code in the API.
"""

from fastapi import HTTPException

from chatrelay.services.errors import (
    Conflict,
    InvalidContent,
    NotAuthorized,
    NotFound,
    PersistenceFailure,
    ServiceError,
)

STATUS_CODES: dict[type[ServiceError], int] = {
    NotFound: 404,
    NotAuthorized: 403,
    InvalidContent: 422,
    Conflict: 409,
    PersistenceFailure: 503,
}


def http_error(e: ServiceError) -> HTTPException:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
