"""The learned-line store: what each line fingerprint resolved to last time.

The store is an explicit object rather than module state so it can be
swapped (or scoped per owner later) without touching callers. The active
instance lives in ``app.extensions["learned_line_store"]`` when one has been
installed, otherwise the SQLAlchemy-backed default is used.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite

from pantry.database import get_dialect_name
from pantry.extensions import db

from .lines import LineDescriptor
from .models import LearnedReceiptLine

logger = logging.getLogger(__name__)

EXTENSION_KEY = "learned_line_store"

_INSERT_BY_DIALECT = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class LearnedLineStore:
    """Interface for the fingerprint to disposition mapping."""

    def get(self, fingerprint: str) -> Optional[LearnedReceiptLine]:
        raise NotImplementedError

    def bind(
        self,
        descriptor: LineDescriptor,
        item_id: int,
        quantity_multiplier: Optional[float] = None,
    ) -> LearnedReceiptLine:
        """Point the fingerprint at an item, clearing any ignore flag."""
        raise NotImplementedError

    def ignore(self, descriptor: LineDescriptor) -> LearnedReceiptLine:
        """Mark the fingerprint as noise, clearing any item binding."""
        raise NotImplementedError

    def unbind_item(self, item_id: int) -> int:
        """Leave every line bound to ``item_id`` unresolved; returns how many changed."""
        raise NotImplementedError

    def forget(self, fingerprint: str) -> bool:
        raise NotImplementedError

    def all(self) -> List[LearnedReceiptLine]:
        raise NotImplementedError


class SqlAlchemyLearnedLineStore(LearnedLineStore):
    """Learned lines in the ``learned_receipt_line`` table.

    Writes go through a single ``INSERT ... ON CONFLICT (fingerprint) DO
    UPDATE`` so two first-time dispositions of the same line cannot both
    insert. Concurrent rebinds are last-writer-wins.
    """

    def get(self, fingerprint: str) -> Optional[LearnedReceiptLine]:
        # populate_existing: an upsert bypasses the identity map
        return db.session.scalars(
            db.select(LearnedReceiptLine)
            .filter_by(fingerprint=fingerprint)
            .execution_options(populate_existing=True)
        ).first()

    def bind(
        self,
        descriptor: LineDescriptor,
        item_id: int,
        quantity_multiplier: Optional[float] = None,
    ) -> LearnedReceiptLine:
        updates: Dict[str, Any] = {"item_id": item_id, "ignored": False}
        if quantity_multiplier is not None:
            updates["quantity_multiplier"] = quantity_multiplier
        learned = self._upsert(descriptor, updates)
        logger.info(f"Learned line {learned.fingerprint[:12]} '{descriptor.title}' bound to item {item_id}")
        return learned

    def ignore(self, descriptor: LineDescriptor) -> LearnedReceiptLine:
        learned = self._upsert(descriptor, {"item_id": None, "ignored": True})
        logger.info(f"Learned line {learned.fingerprint[:12]} '{descriptor.title}' marked as ignored")
        return learned

    def unbind_item(self, item_id: int) -> int:
        result = db.session.execute(
            db.update(LearnedReceiptLine)
            .where(LearnedReceiptLine.item_id == item_id)
            .values(item_id=None, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def forget(self, fingerprint: str) -> bool:
        result = db.session.execute(
            db.delete(LearnedReceiptLine)
            .where(LearnedReceiptLine.fingerprint == fingerprint)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def all(self) -> List[LearnedReceiptLine]:
        return db.session.scalars(
            db.select(LearnedReceiptLine).order_by(LearnedReceiptLine.updated_at.desc(), LearnedReceiptLine.id.desc())
        ).all()

    def _upsert(self, descriptor: LineDescriptor, updates: Dict[str, Any]) -> LearnedReceiptLine:
        fingerprint = descriptor.fingerprint
        values = {
            "fingerprint": fingerprint,
            **descriptor.to_dict(),
            "quantity_multiplier": 1.0,
            **updates,
        }

        insert = _INSERT_BY_DIALECT.get(get_dialect_name())
        if insert is None:
            raise RuntimeError(f"Learned line upserts are not supported on the {get_dialect_name()} dialect")

        stmt = insert(LearnedReceiptLine).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[LearnedReceiptLine.fingerprint],
            set_={**{key: stmt.excluded[key] for key in updates}, "updated_at": func.now()},
        )
        db.session.execute(stmt)

        learned = self.get(fingerprint)
        if learned is None:
            raise RuntimeError(f"Learned line {fingerprint} missing after upsert")
        return learned


_default_store = SqlAlchemyLearnedLineStore()


def get_learned_line_store() -> LearnedLineStore:
    """Get the learned-line store installed on the current app."""
    return current_app.extensions.get(EXTENSION_KEY, _default_store)
