from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.orm import Mapped, relationship

from pantry.extensions import db
from pantry.models.base import BaseModel

if TYPE_CHECKING:
    from pantry.auth.models import User


class Item(BaseModel):
    """An inventory item owned by a single user.

    Attributes:
        title: Display name of the item
        quantity: Units currently in stock
        warning_amount: Optional threshold below which the item is running low
        owner_id: ID of the user who owns the item
    """

    __tablename__ = "item"
    __table_args__ = {"comment": "Household inventory items"}

    title: Mapped[str] = db.Column(db.String(255), nullable=False, comment="Display name of the item")
    quantity: Mapped[int] = db.Column(
        db.Integer,
        nullable=False,
        default=0,
        comment="Units currently in stock",
    )
    warning_amount: Mapped[Optional[int]] = db.Column(
        db.Integer,
        nullable=True,
        comment="Threshold below which the item is considered low on stock",
    )
    owner_id: Mapped[int] = db.Column(
        db.Integer,
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Reference to the user who owns this item",
    )

    owner: Mapped["User"] = relationship("User", back_populates="items")

    @property
    def is_low(self) -> bool:
        """Whether stock has dropped below the warning threshold."""
        return self.warning_amount is not None and self.quantity < self.warning_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "quantity": self.quantity,
            "warning_amount": self.warning_amount,
            "is_low": self.is_low,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, title='{self.title}', quantity={self.quantity}, owner_id={self.owner_id})>"


@event.listens_for(Item, "before_insert")
@event.listens_for(Item, "before_update")
def validate_item(mapper, connection, target):
    """Clean item data before insert/update."""
    if target.title:
        target.title = target.title.strip()
