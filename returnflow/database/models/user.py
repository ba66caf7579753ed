"""
User model for authorization.

Accounts are owned by the storefront's identity provider; this service keeps
the columns it needs to decide ownership and administrative access.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from returnflow.database.base import BaseModel


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_admin(self) -> bool:
        """Check if the role grants administrative access."""
        return self in (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class User(BaseModel):
    """
    User account.

    Attributes:
        id: Unique user identifier (UUID)
        email: User email address (unique, indexed)
        full_name: Optional display name
        role: User role for access control
        is_active: Account active status
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address",
    )

    full_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Display name",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Account active status",
    )

    @property
    def is_admin(self) -> bool:
        """Check if the user holds administrative privilege."""
        return self.role.is_admin
