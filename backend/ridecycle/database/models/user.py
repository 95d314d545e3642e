"""
User model for buyers, sellers and administrators.

A single account can both list bicycles (seller) and buy them (buyer).
Sellers keep payout bank details on their profile; the offer workflow
checks that those details are complete before a seller may accept an offer.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ridecycle.database.base import BaseModel, enum_column


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    USER = "user"
    ADMIN = "admin"


class User(BaseModel):
    """
    Marketplace account.

    Attributes:
        email: Login email (unique)
        name: Display name shown in conversations
        role: USER or ADMIN
        is_active: Inactive accounts cannot authenticate
        bank_account_name: Seller payout account holder
        bank_account_number: Seller payout account number
        bank_code: Seller payout bank code
        bank_branch: Seller payout bank branch
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Display name",
    )

    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole, "user_role"),
        nullable=False,
        default=UserRole.USER,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Account active status",
    )

    # Seller payout details
    bank_account_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    bank_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    bank_branch: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
        CheckConstraint("length(email) >= 3", name="ck_users_email_min_length"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def bank_account_complete(self) -> bool:
        """All four payout fields are filled in."""
        return all(
            value and value.strip()
            for value in (
                self.bank_account_name,
                self.bank_account_number,
                self.bank_code,
                self.bank_branch,
            )
        )
