"""FastAPI dependencies for authentication."""

import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from taskflow.database.database import get_db
from taskflow.database.models import UserDB
from taskflow.auth.tokens import validate_token, TokenValidationError
from taskflow.models.user import User

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, malformed, tampered with,
            expired, or names an unknown user
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = validate_token(credentials.credentials)
    except TokenValidationError as e:
        logger.debug(f"Rejected bearer token ({e.kind})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.http_detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_db = db.query(UserDB).filter(UserDB.id == user_id).first()
    if not user_db:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_db.to_pydantic()
