"""Base model class with SQLAlchemy type hints."""

from __future__ import annotations

from datetime import datetime
import enum
import re
from typing import TYPE_CHECKING, Any, cast

from flask_sqlalchemy.model import DefaultMeta
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from ..extensions import db as _db

if TYPE_CHECKING:
    Model = _db.Model
else:
    Model = cast(DefaultMeta, _db.Model)


class BaseModel(Model):  # type: ignore
    """Base model class with common functionality for all models.

    Adds an integer primary key plus created/updated timestamps and the
    serialization helpers the API layer relies on.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        _db.DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when the record was created",
    )
    updated_at: Mapped[datetime] = mapped_column(
        _db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Timestamp when the record was last updated",
    )

    @_db.declared_attr
    def __tablename__(cls) -> str:
        """Generate __tablename__ automatically.

        Converts CamelCase class names to snake_case table names.
        """
        name = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", cls.__name__)
        return re.sub("([a-z0-9])([A-Z])", r"\1_\2", name).lower()

    def to_dict(self) -> dict[str, Any]:
        """Convert model columns to a JSON-friendly dictionary."""
        result: dict[str, Any] = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, enum.Enum):
                value = value.value
            elif hasattr(value, "isoformat"):
                value = value.isoformat()
            result[column.name] = value
        return result
