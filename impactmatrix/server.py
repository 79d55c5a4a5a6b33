"""JSON API for the Impact Matrix service.

A plain WSGI callable (``app``) so it can run under the stdlib server, the
Flask wrapper or any WSGI host. Routing is an explicit ``if req.path == ...``
chain; every request gets its own connection, committed on success and rolled
back on any error.
"""

from __future__ import annotations

import json
import logging
from socketserver import ThreadingMixIn
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote
from wsgiref.simple_server import WSGIServer, make_server

from impactmatrix import config, store
from impactmatrix.errors import ImpactMatrixError, ValidationError
from impactmatrix.export import export_matrix_to_excel
from impactmatrix.filters import (
    FilterState,
    count_active_filters,
    default_filter_state,
    effective_scores,
    filter_ideas,
    idea_has_drift,
)
from impactmatrix.grid import classify_quadrant

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(level=(level or config.LOG_LEVEL), format=config.LOG_FORMAT)


class Request:
    """Thin wrapper over the WSGI environ: query string plus a JSON or form body."""

    def __init__(self, environ: dict):
        self.environ = environ
        self.method = environ.get("REQUEST_METHOD", "GET").upper()
        self.path = environ.get("PATH_INFO", "/")
        self.query = {k: v[0] for k, v in parse_qs(environ.get("QUERY_STRING", "")).items()}
        self._data: Optional[Dict[str, Any]] = None

    @property
    def data(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = self._parse_body()
        return self._data

    def _parse_body(self) -> Dict[str, Any]:
        if self.method not in {"POST", "PUT", "PATCH", "DELETE"}:
            return {}
        try:
            length = int(self.environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        try:
            raw = self.environ["wsgi.input"].read(length).decode("utf-8") if length else ""
        except UnicodeDecodeError as exc:
            raise ValidationError("Request body must be UTF-8 encoded.") from exc
        if not raw.strip():
            return {}
        if "application/json" in self.environ.get("CONTENT_TYPE", ""):
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Request body is not valid JSON: {exc}") from exc
            if not isinstance(payload, dict):
                raise ValidationError("Request body must be a JSON object.")
            return payload
        return {k: v[0] for k, v in parse_qs(raw, keep_blank_values=True).items()}

    def param(self, name: str, default: Any = None) -> Any:
        """Body value first, then query string."""
        if name in self.data:
            return self.data[name]
        return self.query.get(name, default)

    def require(self, name: str) -> Any:
        value = self.param(name)
        if value in (None, ""):
            raise ValidationError(f"Missing required parameter: {name}")
        return value

    def fields(self, *exclude: str) -> Dict[str, Any]:
        skip = {"id", *exclude}
        return {k: v for k, v in self.data.items() if k not in skip}


class Response:
    """Simple response object that centralizes security headers."""

    def __init__(
        self,
        body: Any = "",
        status: str = "200 OK",
        content_type: str = "text/plain; charset=utf-8",
        headers: Optional[List[Tuple[str, str]]] = None,
    ):
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.status = status
        self.content_type = content_type
        self.headers = headers or []

    def wsgi(self, start_response):
        sec_headers = [
            ("Content-Type", self.content_type),
            ("Content-Length", str(len(self.body))),
            ("X-Frame-Options", "DENY"),
            ("X-Content-Type-Options", "nosniff"),
            ("Referrer-Policy", "strict-origin-when-cross-origin"),
            ("Cache-Control", "no-store"),
        ]
        start_response(self.status, sec_headers + self.headers)
        return [self.body]


def json_response(payload: object, status: str = "200 OK") -> Response:
    return Response(json.dumps(payload, default=str), status=status, content_type="application/json; charset=utf-8")


def ok(data: object = None, **extra: object) -> Response:
    payload: Dict[str, object] = {"ok": True, "data": data}
    payload.update(extra)
    return json_response(payload)


def error_response(status: str, code: str, message: str) -> Response:
    return json_response({"ok": False, "error": code, "message": message}, status=status)


def method_not_allowed() -> Response:
    return error_response("405 Method Not Allowed", "method_not_allowed", "Method not allowed for this route.")


def as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in TRUTHY


def parse_filters(raw: object) -> FilterState:
    if raw in (None, ""):
        return default_filter_state()
    if isinstance(raw, str):
        return FilterState.from_json(raw)
    return FilterState.from_dict(raw)


def board_view(conn, req: Request) -> Dict[str, Any]:
    matrix_id = req.require("impact_matrix_id")
    filters = parse_filters(req.param("filters"))
    store.fetch_required(conn, "impact_matrices", "Impact matrix", matrix_id)
    ideas = store.list_ideas(conn, impact_matrix_id=matrix_id)
    visible = []
    for idea in filter_ideas(ideas, filters, tolerance=config.DRIFT_TOLERANCE_PX):
        effort, value = effective_scores(idea)
        annotated = dict(idea)
        annotated["positioned_effort"] = effort
        annotated["positioned_value"] = value
        annotated["quadrant"] = classify_quadrant(effort, value)
        annotated["has_drift"] = idea_has_drift(idea, config.DRIFT_TOLERANCE_PX)
        visible.append(annotated)
    return {
        "ideas": visible,
        "total": len(ideas),
        "active_filter_count": count_active_filters(filters),
        "filters": filters.to_dict(),
    }


def dispatch(conn, req: Request) -> Optional[Response]:
    """Route one API request. Returns None for unknown paths."""
    path = req.path.rstrip("/") or "/"
    is_get = req.method == "GET"
    is_post = req.method == "POST"

    # Organizations
    if path == "/api/organizations":
        return ok(store.list_organizations(conn)) if is_get else method_not_allowed()
    if path == "/api/organizations/get":
        return ok(store.get_organization(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/organizations/create":
        if not is_post:
            return method_not_allowed()
        return ok(store.create_organization(conn, req.param("name"), req.param("description")))
    if path == "/api/organizations/update":
        if not is_post:
            return method_not_allowed()
        return ok(store.update_organization(conn, req.require("id"), req.fields()))
    if path == "/api/organizations/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_organization(conn, req.require("id")))

    # Projects
    if path == "/api/projects":
        return ok(store.list_projects(conn, req.query.get("organization_id"))) if is_get else method_not_allowed()
    if path == "/api/projects/get":
        return ok(store.get_project(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/projects/create":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.create_project(
                conn,
                req.param("name"),
                req.require("organization_id"),
                req.param("description"),
            )
        )
    if path == "/api/projects/update":
        if not is_post:
            return method_not_allowed()
        return ok(store.update_project(conn, req.require("id"), req.fields()))
    if path == "/api/projects/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_project(conn, req.require("id")))
    if path == "/api/projects/duplicate":
        if not is_post:
            return method_not_allowed()
        return ok(store.duplicate_project(conn, req.require("id")))

    # Impact matrices
    if path == "/api/matrices":
        return ok(store.list_matrices(conn, req.query.get("project_id"))) if is_get else method_not_allowed()
    if path == "/api/matrices/get":
        return ok(store.get_matrix(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/matrices/create":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.create_matrix(
                conn,
                req.param("name"),
                req.require("project_id"),
                req.param("description"),
            )
        )
    if path == "/api/matrices/update":
        if not is_post:
            return method_not_allowed()
        return ok(store.update_matrix(conn, req.require("id"), req.fields()))
    if path == "/api/matrices/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_matrix(conn, req.require("id")))
    if path == "/api/matrices/duplicate":
        if not is_post:
            return method_not_allowed()
        return ok(store.duplicate_matrix(conn, req.require("id")))

    # Categories
    if path == "/api/categories":
        return ok(store.list_categories(conn, req.query.get("impact_matrix_id"))) if is_get else method_not_allowed()
    if path == "/api/categories/get":
        return ok(store.get_category(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/categories/create":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.create_category(
                conn,
                req.param("name"),
                req.require("impact_matrix_id"),
                description=req.param("description"),
                color=req.param("color"),
            )
        )
    if path == "/api/categories/update":
        if not is_post:
            return method_not_allowed()
        return ok(store.update_category(conn, req.require("id"), req.fields()))
    if path == "/api/categories/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_category(conn, req.require("id")))

    # Ideas
    if path == "/api/ideas":
        if not is_get:
            return method_not_allowed()
        return ok(
            store.list_ideas(
                conn,
                impact_matrix_id=req.query.get("impact_matrix_id"),
                category_id=req.query.get("category_id"),
                status=req.query.get("status"),
            )
        )
    if path == "/api/ideas/get":
        return ok(store.get_idea(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/ideas/create":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.create_idea(
                conn,
                req.param("title"),
                req.require("impact_matrix_id"),
                description=req.param("description"),
                effort=req.param("effort", config.DEFAULT_SCORE),
                business_value=req.param("business_value", config.DEFAULT_SCORE),
                weight=req.param("weight", config.DEFAULT_SCORE),
                status=req.param("status", config.DEFAULT_IDEA_STATUS),
                category_id=req.param("category_id"),
            )
        )
    if path == "/api/ideas/update":
        if not is_post:
            return method_not_allowed()
        return ok(store.update_idea(conn, req.require("id"), req.fields()))
    if path == "/api/ideas/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_idea(conn, req.require("id")))
    if path == "/api/ideas/position":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.update_position(
                conn,
                req.require("id"),
                req.require("effort"),
                req.require("business_value"),
            )
        )
    if path == "/api/ideas/custom-position":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.update_custom_position(
                conn,
                req.require("id"),
                req.require("position_x"),
                req.require("position_y"),
            )
        )
    if path == "/api/ideas/reset-position":
        if not is_post:
            return method_not_allowed()
        return ok(store.reset_position(conn, req.require("id")))
    if path == "/api/ideas/reset-all-positions":
        if not is_post:
            return method_not_allowed()
        count = store.reset_all_positions(conn, req.require("impact_matrix_id"))
        return ok({"count": count})
    if path == "/api/ideas/filter":
        if not is_post:
            return method_not_allowed()
        return ok(board_view(conn, req))

    # Filter presets
    if path == "/api/filter-presets":
        if not is_get:
            return method_not_allowed()
        return ok(store.list_filter_presets(conn, req.require("impact_matrix_id")))
    if path == "/api/filter-presets/get":
        return ok(store.get_filter_preset(conn, req.require("id"))) if is_get else method_not_allowed()
    if path == "/api/filter-presets/create":
        if not is_post:
            return method_not_allowed()
        return ok(
            store.create_filter_preset(
                conn,
                req.param("name"),
                parse_filters(req.param("filters")),
                req.require("impact_matrix_id"),
            )
        )
    if path == "/api/filter-presets/delete":
        if not is_post:
            return method_not_allowed()
        return ok(store.delete_filter_preset(conn, req.require("id")))

    # Export
    if path == "/api/export/matrix.xlsx":
        if not is_get:
            return method_not_allowed()
        result = export_matrix_to_excel(
            conn,
            req.require("matrix_id"),
            include_filter_presets=as_bool(req.query.get("include_filter_presets")),
        )
        headers = [("Content-Disposition", f"attachment; filename=\"{result.filename}\"; filename*=UTF-8''{quote(result.filename)}")]
        return Response(result.document, headers=headers, content_type=result.mime_type)

    return None


def app(environ, start_response):
    """WSGI entrypoint."""
    req = Request(environ)

    if req.path == "/healthz":
        return Response("ok").wsgi(start_response)
    if req.path == "/readyz":
        # Readiness includes DB reachability so a locked or missing database fails the probe.
        try:
            store.ensure_bootstrap()
            probe = store.db_connect()
            try:
                probe.execute("SELECT 1").fetchone()
            finally:
                probe.close()
            return Response("ready").wsgi(start_response)
        except Exception as exc:
            logger.warning("Readiness probe failed: %s", exc)
            return Response(f"not-ready: {exc}", status="503 Service Unavailable").wsgi(start_response)

    if not req.path.startswith("/api/"):
        return error_response("404 Not Found", "not_found", f"No route for {req.path}").wsgi(start_response)

    try:
        store.ensure_bootstrap()
    except Exception as exc:
        return error_response(
            "503 Service Unavailable",
            "bootstrap_failed",
            f"Database bootstrap failed: {exc}",
        ).wsgi(start_response)

    conn = store.db_connect()
    try:
        response = dispatch(conn, req)
        if response is None:
            conn.rollback()
            return error_response("404 Not Found", "not_found", f"No route for {req.path}").wsgi(start_response)
        if req.method == "POST":
            conn.commit()
        return response.wsgi(start_response)
    except ImpactMatrixError as exc:
        conn.rollback()
        if exc.status.startswith("5"):
            logger.exception("Request failed: %s %s", req.method, req.path)
        else:
            logger.info("Rejected %s %s: %s", req.method, req.path, exc)
        return error_response(exc.status, exc.code, str(exc)).wsgi(start_response)
    except Exception:
        conn.rollback()
        logger.exception("Unhandled error: %s %s", req.method, req.path)
        return error_response(
            "500 Internal Server Error",
            "server_error",
            "An unexpected server error occurred.",
        ).wsgi(start_response)
    finally:
        conn.close()


class ThreadedWSGIServer(ThreadingMixIn, WSGIServer):
    """Thread-per-request WSGI server for small-team deployments."""

    daemon_threads = True


def run() -> None:
    configure_logging()
    store.ensure_bootstrap()
    server_mode = "threaded" if config.WSGI_THREADED else "single-threaded"
    logger.info(
        "%s running on http://%s:%s (backend=%s, mode=%s)",
        config.APP_NAME,
        config.HOST,
        config.PORT,
        config.DB_BACKEND,
        server_mode,
    )
    if config.WSGI_THREADED:
        server = make_server(config.HOST, config.PORT, app, server_class=ThreadedWSGIServer)
    else:
        server = make_server(config.HOST, config.PORT, app)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    run()
