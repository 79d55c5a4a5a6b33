"""Relational storage for organizations, projects, matrices, categories, ideas and presets.

All entity operations take an open DB-API connection and leave committing to
the caller, so one request maps to one transaction: a handler commits after
the operation returns and rolls back on any exception.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import re
import sqlite3
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from impactmatrix import config
from impactmatrix.errors import FilterStateError, NotFoundError, ValidationError
from impactmatrix.filters import FilterState
from impactmatrix.grid import SCORE_MAX, SCORE_MIN

try:
    import psycopg
    from psycopg.rows import dict_row
except Exception:  # pragma: no cover - optional dependency path
    psycopg = None
    dict_row = None

logger = logging.getLogger(__name__)

BOOTSTRAPPED = False
BOOTSTRAP_LOCK = threading.Lock()
BOOTSTRAP_ERROR = ""

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 5000

SCHEMA = """
CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    organization_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS impact_matrices (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    project_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    color TEXT NOT NULL,
    impact_matrix_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (impact_matrix_id) REFERENCES impact_matrices(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS ideas (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    effort INTEGER NOT NULL DEFAULT 5 CHECK (effort BETWEEN 1 AND 10),
    business_value INTEGER NOT NULL DEFAULT 5 CHECK (business_value BETWEEN 1 AND 10),
    weight INTEGER NOT NULL DEFAULT 5 CHECK (weight BETWEEN 1 AND 10),
    status TEXT NOT NULL DEFAULT 'DRAFT',
    position_x DOUBLE PRECISION,
    position_y DOUBLE PRECISION,
    category_id TEXT,
    impact_matrix_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK ((position_x IS NULL) = (position_y IS NULL)),
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL,
    FOREIGN KEY (impact_matrix_id) REFERENCES impact_matrices(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS filter_presets (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    filters TEXT NOT NULL,
    impact_matrix_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (impact_matrix_id) REFERENCES impact_matrices(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_projects_org ON projects(organization_id);
CREATE INDEX IF NOT EXISTS idx_matrices_project ON impact_matrices(project_id);
CREATE INDEX IF NOT EXISTS idx_categories_matrix ON categories(impact_matrix_id);
CREATE INDEX IF NOT EXISTS idx_ideas_matrix ON ideas(impact_matrix_id);
CREATE INDEX IF NOT EXISTS idx_ideas_category ON ideas(category_id);
CREATE INDEX IF NOT EXISTS idx_presets_matrix ON filter_presets(impact_matrix_id)
"""


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def iso(ts: Optional[dt.datetime] = None) -> str:
    value = ts or utcnow()
    return value.isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


class PostgresCompatConnection:
    """Lets the sqlite-style ``?`` queries in this module run on psycopg."""

    def __init__(self, conn: Any):
        self._conn = conn
        self._cursor = None

    def execute(self, sql: str, params: Tuple[Any, ...] = ()):
        # One cursor per connection; callers consume results before the next query.
        if self._cursor is None or self._cursor.closed:
            self._cursor = self._conn.cursor()
        self._cursor.execute(sql.replace("?", "%s"), params)
        return self._cursor

    def executescript(self, script: str) -> None:
        for statement in script.split(";"):
            if statement.strip():
                self.execute(statement)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
        self._conn.close()


def db_connect():
    if config.DB_BACKEND == "postgres":
        if psycopg is None:
            raise RuntimeError("PostgreSQL backend requested but psycopg is not installed.")
        raw = psycopg.connect(config.DATABASE_URL, row_factory=dict_row, autocommit=False)
        return PostgresCompatConnection(raw)

    db_path = config.DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=config.DB_BUSY_TIMEOUT_MS / 1000.0)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {config.DB_BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys = ON")
    journal_mode = config.DB_JOURNAL_MODE if config.DB_JOURNAL_MODE in {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"} else "WAL"
    synchronous = config.DB_SYNCHRONOUS if config.DB_SYNCHRONOUS in {"OFF", "NORMAL", "FULL", "EXTRA"} else "NORMAL"
    conn.execute(f"PRAGMA journal_mode = {journal_mode}")
    conn.execute(f"PRAGMA synchronous = {synchronous}")
    return conn


def init_db() -> None:
    """Create the schema. Safe to call repeatedly."""
    conn = db_connect()
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
    logger.info("Schema ready (backend=%s)", config.DB_BACKEND)


def ensure_bootstrap() -> None:
    """Initialize the database once per process.

    Concurrent WSGI requests can race here, hence the double-checked lock.
    """
    global BOOTSTRAPPED, BOOTSTRAP_ERROR
    if BOOTSTRAPPED:
        return
    with BOOTSTRAP_LOCK:
        if BOOTSTRAPPED:
            return
        try:
            init_db()
            BOOTSTRAPPED = True
            BOOTSTRAP_ERROR = ""
        except Exception as exc:
            BOOTSTRAP_ERROR = str(exc)
            logger.exception("Database bootstrap failed")
            raise


# Validation


def require_text(value: object, label: str, max_length: int = NAME_MAX_LENGTH) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{label} is required.")
    if len(text) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters.")
    return text


def copy_name(name: str) -> str:
    """Source name plus the copy suffix, shortened so the result stays within NAME_MAX_LENGTH."""
    room = NAME_MAX_LENGTH - len(config.COPY_SUFFIX)
    return f"{name[:room].rstrip() or name[:room]}{config.COPY_SUFFIX}"


def optional_text(value: object, max_length: int = DESCRIPTION_MAX_LENGTH) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"Description must be at most {max_length} characters.")
    return text


def validate_score(value: object, label: str) -> int:
    """Scores are whole numbers in [1, 10]; numeric strings from form posts are accepted."""
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number between {SCORE_MIN} and {SCORE_MAX}.")
    if isinstance(value, str):
        text = value.strip()
        if not re.fullmatch(r"[+-]?\d+", text):
            raise ValidationError(f"{label} must be a whole number between {SCORE_MIN} and {SCORE_MAX}.")
        value = int(text)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"{label} must be a whole number between {SCORE_MIN} and {SCORE_MAX}.")
    if not SCORE_MIN <= value <= SCORE_MAX:
        raise ValidationError(f"{label} must be between {SCORE_MIN} and {SCORE_MAX}.")
    return value


def validate_coordinate(value: object, label: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number.") from None
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a finite number.")
    return number


def validate_color(value: object) -> str:
    color = "" if value is None else str(value).strip()
    if not HEX_COLOR_RE.match(color):
        raise ValidationError("Color must be a valid hex color like #3b82f6.")
    return color


def validate_status(value: object) -> str:
    status = "" if value is None else str(value).strip().upper()
    if status not in config.IDEA_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(config.IDEA_STATUSES)}.")
    return status


def coerce_filters(filters: object) -> FilterState:
    if isinstance(filters, FilterState):
        return filters
    if isinstance(filters, str):
        return FilterState.from_json(filters)
    return FilterState.from_dict(filters)


# Row helpers


def fetch_all(conn, sql: str, params: Tuple = ()) -> List[Dict[str, Any]]:
    return [dict(row) for row in conn.execute(sql, params).fetchall()]


def fetch_required(conn, table: str, entity: str, entity_id: object) -> Dict[str, Any]:
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
    if row is None:
        raise NotFoundError(entity, entity_id)
    return dict(row)


def update_row(conn, table: str, entity_id: str, values: Dict[str, Any]) -> None:
    if not values:
        return
    values = dict(values)
    values["updated_at"] = iso()
    assignments = ", ".join(f"{column} = ?" for column in values)
    conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        tuple(values.values()) + (entity_id,),
    )


def shape_idea(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Fold the joined ``category_*`` columns into a nested ``category`` entry."""
    idea = dict(row)
    name = idea.pop("category_name", None)
    color = idea.pop("category_color", None)
    description = idea.pop("category_description", None)
    idea["category"] = None
    if idea.get("category_id") is not None and name is not None:
        idea["category"] = {
            "id": idea["category_id"],
            "name": name,
            "color": color,
            "description": description,
        }
    return idea


IDEA_SELECT = """
    SELECT i.*, c.name AS category_name, c.color AS category_color, c.description AS category_description
    FROM ideas i
    LEFT JOIN categories c ON c.id = i.category_id
"""


# Organizations


def list_organizations(conn) -> List[Dict[str, Any]]:
    return fetch_all(
        conn,
        """
        SELECT o.*, (SELECT COUNT(*) FROM projects p WHERE p.organization_id = o.id) AS project_count
        FROM organizations o
        ORDER BY o.name ASC, o.id ASC
        """,
    )


def get_organization(conn, organization_id: str) -> Dict[str, Any]:
    organization = fetch_required(conn, "organizations", "Organization", organization_id)
    organization["projects"] = fetch_all(
        conn,
        """
        SELECT p.*, (SELECT COUNT(*) FROM impact_matrices m WHERE m.project_id = p.id) AS matrix_count
        FROM projects p
        WHERE p.organization_id = ?
        ORDER BY p.created_at DESC, p.id DESC
        """,
        (organization_id,),
    )
    return organization


def create_organization(conn, name: object, description: object = None) -> Dict[str, Any]:
    now = iso()
    organization_id = new_id()
    conn.execute(
        "INSERT INTO organizations (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (organization_id, require_text(name, "Name"), optional_text(description), now, now),
    )
    logger.info("Created organization %s", organization_id)
    return fetch_required(conn, "organizations", "Organization", organization_id)


def update_organization(conn, organization_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    fetch_required(conn, "organizations", "Organization", organization_id)
    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], "Name")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    update_row(conn, "organizations", organization_id, values)
    return fetch_required(conn, "organizations", "Organization", organization_id)


def delete_organization(conn, organization_id: str) -> bool:
    fetch_required(conn, "organizations", "Organization", organization_id)
    conn.execute("DELETE FROM organizations WHERE id = ?", (organization_id,))
    logger.info("Deleted organization %s", organization_id)
    return True


# Projects


def list_projects(conn, organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = """
        SELECT p.*, o.name AS organization_name,
               (SELECT COUNT(*) FROM impact_matrices m WHERE m.project_id = p.id) AS matrix_count
        FROM projects p
        JOIN organizations o ON o.id = p.organization_id
    """
    params: Tuple = ()
    if organization_id:
        sql += " WHERE p.organization_id = ?"
        params = (organization_id,)
    sql += " ORDER BY p.created_at DESC, p.id DESC"
    return fetch_all(conn, sql, params)


def get_project(conn, project_id: str) -> Dict[str, Any]:
    project = fetch_required(conn, "projects", "Project", project_id)
    project["organization"] = fetch_required(conn, "organizations", "Organization", project["organization_id"])
    project["matrices"] = fetch_all(
        conn,
        """
        SELECT m.*,
               (SELECT COUNT(*) FROM ideas i WHERE i.impact_matrix_id = m.id) AS idea_count,
               (SELECT COUNT(*) FROM categories c WHERE c.impact_matrix_id = m.id) AS category_count
        FROM impact_matrices m
        WHERE m.project_id = ?
        ORDER BY m.created_at DESC, m.id DESC
        """,
        (project_id,),
    )
    return project


def create_project(conn, name: object, organization_id: str, description: object = None) -> Dict[str, Any]:
    name = require_text(name, "Name")
    fetch_required(conn, "organizations", "Organization", organization_id)
    now = iso()
    project_id = new_id()
    conn.execute(
        "INSERT INTO projects (id, name, description, organization_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
        (project_id, name, optional_text(description), organization_id, now, now),
    )
    logger.info("Created project %s in organization %s", project_id, organization_id)
    return fetch_required(conn, "projects", "Project", project_id)


def update_project(conn, project_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    fetch_required(conn, "projects", "Project", project_id)
    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], "Name")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    if fields.get("organization_id"):
        fetch_required(conn, "organizations", "Organization", fields["organization_id"])
        values["organization_id"] = fields["organization_id"]
    update_row(conn, "projects", project_id, values)
    return fetch_required(conn, "projects", "Project", project_id)


def delete_project(conn, project_id: str) -> bool:
    fetch_required(conn, "projects", "Project", project_id)
    conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    logger.info("Deleted project %s", project_id)
    return True


def duplicate_project(conn, project_id: str) -> Dict[str, Any]:
    """Deep-copy a project with every matrix, category and idea.

    Runs on the caller's transaction; nothing is visible until it commits.
    """
    source = fetch_required(conn, "projects", "Project", project_id)
    copy = create_project(
        conn,
        copy_name(source["name"]),
        source["organization_id"],
        source["description"],
    )
    matrices = fetch_all(
        conn,
        "SELECT * FROM impact_matrices WHERE project_id = ? ORDER BY created_at ASC, id ASC",
        (project_id,),
    )
    for matrix in matrices:
        copy_matrix_contents(conn, matrix, copy["id"])
    logger.info("Duplicated project %s as %s (%d matrices)", project_id, copy["id"], len(matrices))
    return copy


# Impact matrices


def list_matrices(conn, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = """
        SELECT m.*, p.name AS project_name, p.organization_id AS organization_id, o.name AS organization_name,
               (SELECT COUNT(*) FROM ideas i WHERE i.impact_matrix_id = m.id) AS idea_count,
               (SELECT COUNT(*) FROM categories c WHERE c.impact_matrix_id = m.id) AS category_count
        FROM impact_matrices m
        JOIN projects p ON p.id = m.project_id
        JOIN organizations o ON o.id = p.organization_id
    """
    params: Tuple = ()
    if project_id:
        sql += " WHERE m.project_id = ?"
        params = (project_id,)
    sql += " ORDER BY m.created_at DESC, m.id DESC"
    return fetch_all(conn, sql, params)


def load_matrix_bundle(
    conn,
    matrix_id: str,
    idea_order: str = "DESC",
    include_filter_presets: bool = False,
) -> Dict[str, Any]:
    """Matrix with its project, organization, categories and ideas.

    Raises NotFoundError before reading anything else when the matrix is missing.
    """
    matrix = fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)
    project = fetch_required(conn, "projects", "Project", matrix["project_id"])
    project["organization"] = fetch_required(conn, "organizations", "Organization", project["organization_id"])
    matrix["project"] = project
    matrix["categories"] = fetch_all(
        conn,
        """
        SELECT c.*, (SELECT COUNT(*) FROM ideas i WHERE i.category_id = c.id) AS idea_count
        FROM categories c
        WHERE c.impact_matrix_id = ?
        ORDER BY c.name ASC, c.id ASC
        """,
        (matrix_id,),
    )
    direction = "ASC" if idea_order.upper() == "ASC" else "DESC"
    rows = conn.execute(
        f"{IDEA_SELECT} WHERE i.impact_matrix_id = ? ORDER BY i.created_at {direction}, i.id {direction}",
        (matrix_id,),
    ).fetchall()
    matrix["ideas"] = [shape_idea(row) for row in rows]
    if include_filter_presets:
        matrix["filter_presets"] = list_filter_presets(conn, matrix_id, order_by="name")
    return matrix


def get_matrix(conn, matrix_id: str) -> Dict[str, Any]:
    return load_matrix_bundle(conn, matrix_id)


def create_matrix(conn, name: object, project_id: str, description: object = None) -> Dict[str, Any]:
    name = require_text(name, "Name")
    fetch_required(conn, "projects", "Project", project_id)
    now = iso()
    matrix_id = new_id()
    conn.execute(
        "INSERT INTO impact_matrices (id, name, description, project_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
        (matrix_id, name, optional_text(description), project_id, now, now),
    )
    logger.info("Created impact matrix %s in project %s", matrix_id, project_id)
    return fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)


def update_matrix(conn, matrix_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)
    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], "Name")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    if fields.get("project_id"):
        fetch_required(conn, "projects", "Project", fields["project_id"])
        values["project_id"] = fields["project_id"]
    update_row(conn, "impact_matrices", matrix_id, values)
    return fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)


def delete_matrix(conn, matrix_id: str) -> bool:
    fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)
    conn.execute("DELETE FROM impact_matrices WHERE id = ?", (matrix_id,))
    logger.info("Deleted impact matrix %s", matrix_id)
    return True


def copy_matrix_contents(conn, source: Mapping[str, Any], project_id: str) -> Dict[str, Any]:
    """Copy one matrix into ``project_id``: categories remapped, custom positions cleared."""
    copy = create_matrix(conn, copy_name(source["name"]), project_id, source["description"])
    category_map: Dict[str, str] = {}
    for category in fetch_all(
        conn,
        "SELECT * FROM categories WHERE impact_matrix_id = ? ORDER BY created_at ASC, id ASC",
        (source["id"],),
    ):
        new_category = create_category(
            conn,
            category["name"],
            copy["id"],
            description=category["description"],
            color=category["color"],
        )
        category_map[category["id"]] = new_category["id"]

    for idea in fetch_all(
        conn,
        "SELECT * FROM ideas WHERE impact_matrix_id = ? ORDER BY created_at ASC, id ASC",
        (source["id"],),
    ):
        create_idea(
            conn,
            idea["title"],
            copy["id"],
            description=idea["description"],
            effort=idea["effort"],
            business_value=idea["business_value"],
            weight=idea["weight"],
            status=idea["status"],
            category_id=category_map.get(idea["category_id"]) if idea["category_id"] else None,
        )
    return copy


def duplicate_matrix(conn, matrix_id: str) -> Dict[str, Any]:
    source = fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)
    copy = copy_matrix_contents(conn, source, source["project_id"])
    logger.info("Duplicated impact matrix %s as %s", matrix_id, copy["id"])
    return copy


# Categories


def list_categories(conn, impact_matrix_id: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = """
        SELECT c.*, (SELECT COUNT(*) FROM ideas i WHERE i.category_id = c.id) AS idea_count
        FROM categories c
    """
    params: Tuple = ()
    if impact_matrix_id:
        sql += " WHERE c.impact_matrix_id = ?"
        params = (impact_matrix_id,)
    sql += " ORDER BY c.name ASC, c.id ASC"
    return fetch_all(conn, sql, params)


def get_category(conn, category_id: str) -> Dict[str, Any]:
    category = fetch_required(conn, "categories", "Category", category_id)
    category["ideas"] = fetch_all(
        conn,
        "SELECT * FROM ideas WHERE category_id = ? ORDER BY created_at DESC, id DESC",
        (category_id,),
    )
    return category


def create_category(
    conn,
    name: object,
    impact_matrix_id: str,
    description: object = None,
    color: object = None,
) -> Dict[str, Any]:
    name = require_text(name, "Name")
    color = validate_color(config.DEFAULT_CATEGORY_COLOR if color in (None, "") else color)
    fetch_required(conn, "impact_matrices", "Impact matrix", impact_matrix_id)
    now = iso()
    category_id = new_id()
    conn.execute(
        """
        INSERT INTO categories (id, name, description, color, impact_matrix_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (category_id, name, optional_text(description), color, impact_matrix_id, now, now),
    )
    return fetch_required(conn, "categories", "Category", category_id)


def update_category(conn, category_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    fetch_required(conn, "categories", "Category", category_id)
    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], "Name")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    if "color" in fields:
        values["color"] = validate_color(fields["color"])
    update_row(conn, "categories", category_id, values)
    return fetch_required(conn, "categories", "Category", category_id)


def delete_category(conn, category_id: str) -> bool:
    """Delete a category; its ideas stay, uncategorized."""
    fetch_required(conn, "categories", "Category", category_id)
    conn.execute("UPDATE ideas SET category_id = NULL, updated_at = ? WHERE category_id = ?", (iso(), category_id))
    conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    logger.info("Deleted category %s", category_id)
    return True


# Ideas


def resolve_category(conn, category_id: object, impact_matrix_id: str) -> Optional[str]:
    if category_id in (None, ""):
        return None
    category = fetch_required(conn, "categories", "Category", category_id)
    if category["impact_matrix_id"] != impact_matrix_id:
        raise ValidationError("Category belongs to a different impact matrix.")
    return category["id"]


def list_ideas(
    conn,
    impact_matrix_id: Optional[str] = None,
    category_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if impact_matrix_id:
        clauses.append("i.impact_matrix_id = ?")
        params.append(impact_matrix_id)
    if category_id:
        clauses.append("i.category_id = ?")
        params.append(category_id)
    if status:
        clauses.append("i.status = ?")
        params.append(validate_status(status))
    sql = IDEA_SELECT
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY i.created_at DESC, i.id DESC"
    return [shape_idea(row) for row in conn.execute(sql, tuple(params)).fetchall()]


def get_idea(conn, idea_id: str) -> Dict[str, Any]:
    row = conn.execute(f"{IDEA_SELECT} WHERE i.id = ?", (idea_id,)).fetchone()
    if row is None:
        raise NotFoundError("Idea", idea_id)
    return shape_idea(row)


def create_idea(
    conn,
    title: object,
    impact_matrix_id: str,
    description: object = None,
    effort: object = config.DEFAULT_SCORE,
    business_value: object = config.DEFAULT_SCORE,
    weight: object = config.DEFAULT_SCORE,
    status: object = config.DEFAULT_IDEA_STATUS,
    category_id: object = None,
) -> Dict[str, Any]:
    title = require_text(title, "Title")
    effort = validate_score(effort, "Effort")
    business_value = validate_score(business_value, "Business value")
    weight = validate_score(weight, "Weight")
    status = validate_status(status)
    fetch_required(conn, "impact_matrices", "Impact matrix", impact_matrix_id)
    category_id = resolve_category(conn, category_id, impact_matrix_id)
    now = iso()
    idea_id = new_id()
    conn.execute(
        """
        INSERT INTO ideas
        (id, title, description, effort, business_value, weight, status, position_x, position_y,
         category_id, impact_matrix_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?, ?, ?)
        """,
        (
            idea_id,
            title,
            optional_text(description),
            effort,
            business_value,
            weight,
            status,
            category_id,
            impact_matrix_id,
            now,
            now,
        ),
    )
    return get_idea(conn, idea_id)


def update_idea(conn, idea_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    current = fetch_required(conn, "ideas", "Idea", idea_id)
    values: Dict[str, Any] = {}
    if "title" in fields:
        values["title"] = require_text(fields["title"], "Title")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    if "effort" in fields:
        values["effort"] = validate_score(fields["effort"], "Effort")
    if "business_value" in fields:
        values["business_value"] = validate_score(fields["business_value"], "Business value")
    if "weight" in fields:
        values["weight"] = validate_score(fields["weight"], "Weight")
    if "status" in fields:
        values["status"] = validate_status(fields["status"])
    if "category_id" in fields:
        values["category_id"] = resolve_category(conn, fields["category_id"], current["impact_matrix_id"])
    update_row(conn, "ideas", idea_id, values)
    return get_idea(conn, idea_id)


def update_position(conn, idea_id: str, effort: object, business_value: object) -> Dict[str, Any]:
    """Persist a snap-to-grid move: only the scores change."""
    effort = validate_score(effort, "Effort")
    business_value = validate_score(business_value, "Business value")
    fetch_required(conn, "ideas", "Idea", idea_id)
    update_row(conn, "ideas", idea_id, {"effort": effort, "business_value": business_value})
    return get_idea(conn, idea_id)


def update_custom_position(conn, idea_id: str, position_x: object, position_y: object) -> Dict[str, Any]:
    """Persist a free-form pixel position; both coordinates are required together."""
    position_x = validate_coordinate(position_x, "Position X")
    position_y = validate_coordinate(position_y, "Position Y")
    fetch_required(conn, "ideas", "Idea", idea_id)
    update_row(conn, "ideas", idea_id, {"position_x": position_x, "position_y": position_y})
    return get_idea(conn, idea_id)


def reset_position(conn, idea_id: str) -> Dict[str, Any]:
    fetch_required(conn, "ideas", "Idea", idea_id)
    update_row(conn, "ideas", idea_id, {"position_x": None, "position_y": None})
    return get_idea(conn, idea_id)


def reset_all_positions(conn, impact_matrix_id: str) -> int:
    fetch_required(conn, "impact_matrices", "Impact matrix", impact_matrix_id)
    cur = conn.execute(
        """
        UPDATE ideas SET position_x = NULL, position_y = NULL, updated_at = ?
        WHERE impact_matrix_id = ? AND (position_x IS NOT NULL OR position_y IS NOT NULL)
        """,
        (iso(), impact_matrix_id),
    )
    count = max(0, int(cur.rowcount))
    logger.info("Reset %d custom positions in impact matrix %s", count, impact_matrix_id)
    return count


def delete_idea(conn, idea_id: str) -> bool:
    fetch_required(conn, "ideas", "Idea", idea_id)
    conn.execute("DELETE FROM ideas WHERE id = ?", (idea_id,))
    return True


# Filter presets


def preset_to_dict(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Decode a stored preset; raises FilterStateError when the blob no longer validates."""
    preset = dict(row)
    preset["filters"] = FilterState.from_json(preset["filters"]).to_dict()
    return preset


def list_filter_presets(conn, impact_matrix_id: str, order_by: str = "created_at") -> List[Dict[str, Any]]:
    """Presets of one matrix. Stored blobs that fail validation are skipped."""
    order = "name ASC, id ASC" if order_by == "name" else "created_at DESC, id DESC"
    presets: List[Dict[str, Any]] = []
    for row in conn.execute(
        f"SELECT * FROM filter_presets WHERE impact_matrix_id = ? ORDER BY {order}",
        (impact_matrix_id,),
    ).fetchall():
        try:
            presets.append(preset_to_dict(row))
        except FilterStateError as exc:
            logger.warning("Skipping filter preset %s: %s", row["id"], exc)
    return presets


def get_filter_preset(conn, preset_id: str) -> Dict[str, Any]:
    return preset_to_dict(fetch_required(conn, "filter_presets", "Filter preset", preset_id))


def create_filter_preset(conn, name: object, filters: object, impact_matrix_id: str) -> Dict[str, Any]:
    name = require_text(name, "Name")
    state = coerce_filters(filters)
    fetch_required(conn, "impact_matrices", "Impact matrix", impact_matrix_id)
    now = iso()
    preset_id = new_id()
    conn.execute(
        """
        INSERT INTO filter_presets (id, name, filters, impact_matrix_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (preset_id, name, state.to_json(), impact_matrix_id, now, now),
    )
    return get_filter_preset(conn, preset_id)


def delete_filter_preset(conn, preset_id: str) -> bool:
    fetch_required(conn, "filter_presets", "Filter preset", preset_id)
    conn.execute("DELETE FROM filter_presets WHERE id = ?", (preset_id,))
    return True
