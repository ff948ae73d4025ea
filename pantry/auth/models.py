from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from flask_login import UserMixin
from sqlalchemy.orm import Mapped, relationship
from werkzeug.security import check_password_hash, generate_password_hash

from pantry.extensions import db
from pantry.models.base import BaseModel

if TYPE_CHECKING:
    from pantry.items.models import Item
    from pantry.receipts.models import ReceiptScan


class User(BaseModel, UserMixin):
    """Owner of items and receipt scans.

    Attributes:
        username: Unique username for the user
        email: Unique email address for the user
        password_hash: Hashed password (never store plaintext passwords!)
        is_active: Whether the user account is active
    """

    __tablename__ = "user"

    username: Mapped[str] = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique username",
    )
    email: Mapped[str] = db.Column(
        db.String(120),
        unique=True,
        nullable=False,
        index=True,
        comment="User's email address",
    )
    password_hash: Mapped[Optional[str]] = db.Column(db.String(256), nullable=True, comment="Hashed password")
    is_active: Mapped[bool] = db.Column(
        db.Boolean,
        default=True,
        nullable=False,
        comment="Whether the user account is active",
    )

    items: Mapped[List["Item"]] = relationship(
        "Item",
        back_populates="owner",
        cascade="all, delete-orphan",
        lazy="dynamic",
        passive_deletes=True,
    )
    receipt_scans: Mapped[List["ReceiptScan"]] = relationship(
        "ReceiptScan",
        back_populates="owner",
        cascade="all, delete-orphan",
        lazy="dynamic",
        passive_deletes=True,
    )

    def set_password(self, password: str) -> None:
        """Hash and store the password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        """Check a plaintext password against the stored hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"
