from fastapi import HTTPException

from courtside.services.errors import (
    ConflictError,
    EngineError,
    IntegrityViolation,
    NotFoundError,
    ValidationError,
)


def to_http_exception(error: EngineError) -> HTTPException:
    """Map a service error onto the HTTP status the API reports for it."""
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail={"message": str(error), "existing": error.existing})
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (ValidationError, IntegrityViolation)):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
