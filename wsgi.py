"""WSGI entry point for local development and production WSGI servers.

Usable with Flask's built-in server (``python wsgi.py``) or any WSGI server,
e.g. ``gunicorn wsgi:application``.
"""

import logging
import os

# Load environment variables before importing the app
from dotenv import load_dotenv

load_dotenv()

if "FLASK_ENV" not in os.environ:
    os.environ["FLASK_ENV"] = "development"

from pantry import create_app  # noqa: E402

logger = logging.getLogger(__name__)

app = create_app()
application = app

logger.info(
    f"Started {app.config.get('APP_NAME')} ({os.environ.get('FLASK_ENV')}), "
    f"database from DATABASE_URL: {'yes' if os.environ.get('DATABASE_URL') else 'no'}"
)


if __name__ == "__main__":
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "5000"))
    application.run(host=host, port=port, debug=os.environ.get("FLASK_ENV") == "development")
