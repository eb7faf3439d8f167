from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from promo_credits.core.database import get_db
from promo_credits.services.access import Caller, resolve_caller
from promo_credits.services.exceptions import AuthError

security = HTTPBearer()


def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Caller:
    """Resolve the caller from a Bearer JWT issued by the auth service."""
    try:
        return resolve_caller(db, credentials.credentials)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_admin_caller(
    caller: Caller = Depends(get_current_caller),
) -> Caller:
    """Require the current caller to have admin privileges."""
    if not caller.is_elevated:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return caller
