from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import ExeatRole, StaffExeatRole, User
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import UserType
from app.db.session import get_db


# Tokens are issued by the identity provider; there is no login route in this service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


async def load_role_names(db: AsyncSession, staff_id: UUID) -> list:
    """Exeat role names held by a staff member."""
    result = await db.execute(
        select(ExeatRole.name)
        .join(StaffExeatRole, StaffExeatRole.exeat_role_id == ExeatRole.id)
        .where(StaffExeatRole.staff_id == staff_id)
        .order_by(ExeatRole.name)
    )
    return list(result.scalars().all())


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user and, for staff, their exeat roles from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise credentials_exception
    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise credentials_exception

    user = await db.get(User, user_id)
    if not user or user.status != "ACTIVE":
        raise credentials_exception
    if payload.get("user_type") and payload.get("user_type") != user.user_type:
        raise credentials_exception

    roles = await load_role_names(db, user.id) if user.user_type == UserType.STAFF.value else []

    return CurrentUser(
        id=user.id,
        user_type=user.user_type,
        email=user.email,
        full_name=user.full_name,
        roles=roles,
    )


async def require_student(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_student:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only students can perform this action",
        )
    return current_user


async def require_staff(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can perform this action",
        )
    return current_user
