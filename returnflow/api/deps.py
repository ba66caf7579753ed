"""
FastAPI dependencies for authentication, authorization and services.

Tokens are issued elsewhere; this service only validates bearer JWTs and
resolves their subject to a stored user.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from returnflow.core.config import Settings, get_settings
from returnflow.core.logging import get_logger, set_user_id
from returnflow.core.security import TokenError, get_token_user_id
from returnflow.database.connection import get_db
from returnflow.database.models.user import User, UserRole
from returnflow.services.returns.service import ReturnService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate the bearer token and load the user it was issued for.

    Raises:
        HTTPException: 401 if the token is missing, invalid or its user is
            unknown, 403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        user_id = get_token_user_id(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code)
        raise credentials_exception

    if user_id is None:
        logger.warning("Authentication failed: Token has no valid subject")
        raise credentials_exception

    try:
        user = await db.get(User, user_id)
    except SQLAlchemyError as e:
        logger.error(
            "Database error during user retrieval",
            user_id=str(user_id),
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_user_id(str(user.id))
    return user


def require_role(*allowed_roles: UserRole):
    """
    Create a dependency that requires one of the given roles.

    Example:
        @router.post("/returns/{return_id}/reject")
        async def reject(admin: Annotated[User, Depends(require_role(UserRole.ADMIN))]):
            ...
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=str(current_user.id),
                user_role=current_user.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return role_checker


get_current_admin = require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)


def get_return_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ReturnService:
    """Build the return service for the request's database session."""
    return ReturnService(db, settings=settings)


CurrentActiveUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(get_current_admin)]
ReturnServiceDep = Annotated[ReturnService, Depends(get_return_service)]
