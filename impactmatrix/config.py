"""Runtime settings for the Impact Matrix service.

Every value can be overridden through an ``IMPACT_MATRIX_*`` environment
variable so the same build runs locally (SQLite file under ``data/``) and on
a container host (PostgreSQL through ``IMPACT_MATRIX_DATABASE_URL``).
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "Impact Matrix"
APP_TAGLINE = "Effort vs. business value prioritization for product teams"
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = Path(os.environ.get("IMPACT_MATRIX_DB_PATH", str(DATA_DIR / "impact_matrix.db")))
DATABASE_URL = os.environ.get("IMPACT_MATRIX_DATABASE_URL", os.environ.get("DATABASE_URL", "")).strip()
DB_BACKEND = "postgres" if DATABASE_URL.startswith(("postgres://", "postgresql://")) else "sqlite"
SECRET_KEY = os.environ.get("IMPACT_MATRIX_SECRET_KEY", "change-this-secret-in-production")
# Generic container vars are honoured; IMPACT_MATRIX_* takes precedence.
HOST = os.environ.get("IMPACT_MATRIX_HOST", os.environ.get("HOST", "127.0.0.1"))
PORT = int(os.environ.get("IMPACT_MATRIX_PORT", os.environ.get("PORT", "8080")))
WSGI_THREADED = os.environ.get("IMPACT_MATRIX_WSGI_THREADED", "1") == "1"
DB_BUSY_TIMEOUT_MS = max(1000, int(os.environ.get("IMPACT_MATRIX_DB_BUSY_TIMEOUT_MS", "6000")))
DB_JOURNAL_MODE = os.environ.get("IMPACT_MATRIX_DB_JOURNAL_MODE", "WAL").strip().upper()
DB_SYNCHRONOUS = os.environ.get("IMPACT_MATRIX_DB_SYNCHRONOUS", "NORMAL").strip().upper()
LOG_LEVEL = os.environ.get("IMPACT_MATRIX_LOG_LEVEL", "INFO").strip().upper()
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s:%(lineno)d - %(message)s"
DRIFT_TOLERANCE_PX = max(0.0, float(os.environ.get("IMPACT_MATRIX_DRIFT_TOLERANCE_PX", "10")))
EXPORT_CREATOR = os.environ.get("IMPACT_MATRIX_EXPORT_CREATOR", APP_NAME)

IDEA_STATUSES = ["DRAFT", "IN_PROGRESS", "COMPLETED", "ARCHIVED"]
DEFAULT_IDEA_STATUS = "DRAFT"
DEFAULT_SCORE = 5
DEFAULT_CATEGORY_COLOR = "#3b82f6"
COPY_SUFFIX = " (Copy)"
EXPORT_VERSION = "1.0"
