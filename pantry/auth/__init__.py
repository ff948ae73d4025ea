"""Authentication package initialization.

Login resolves the opaque owner identifier (the user id) that scopes every
item and receipt operation.
"""

import logging

from flask import Blueprint

# Initialize Blueprint
bp = Blueprint("auth", __name__, url_prefix="/auth")

# Configure logger
logger = logging.getLogger(__name__)

# Import routes after blueprint creation to avoid circular imports
from . import api  # noqa: E402, F401
