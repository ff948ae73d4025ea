"""Models package for the application.

This module exports the shared model base used by every feature package.
"""

from __future__ import annotations

from .base import BaseModel

__all__ = [
    "BaseModel",
]
