import logging

from fastapi import HTTPException

from promo_credits.services.exceptions import (
    DataIntegrityError,
    Forbidden,
    IdempotencyConflict,
    InsufficientCreditsError,
    InvalidState,
    NotFoundError,
    PromotionAlreadyCancelled,
    PromotionServiceError,
)

logger = logging.getLogger(__name__)


def http_error(exc: PromotionServiceError) -> HTTPException:
    """Map a service error to a response with a stable error kind."""
    detail = {"error": exc.kind, "message": str(exc)}

    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=detail)
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=403, detail=detail)
    if isinstance(exc, PromotionAlreadyCancelled):
        detail["credits_refunded"] = exc.credits_refunded
        detail["new_balance"] = exc.new_balance
        return HTTPException(status_code=409, detail=detail)
    if isinstance(exc, InvalidState):
        detail["status"] = exc.status
        return HTTPException(status_code=409, detail=detail)
    if isinstance(exc, IdempotencyConflict):
        return HTTPException(status_code=409, detail=detail)
    if isinstance(exc, InsufficientCreditsError):
        detail["required"] = exc.required
        detail["available"] = exc.available
        return HTTPException(status_code=402, detail=detail)

    if isinstance(exc, DataIntegrityError):
        logger.exception("Data integrity violation")
    return HTTPException(status_code=500, detail={"error": "internal", "message": "Internal error"})
