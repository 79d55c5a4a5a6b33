#!/usr/bin/env python3
"""Impact Matrix - Flask application

Wraps the WSGI API in a Flask catch-all route so the service can be run with
``flask run`` and managed through ``flask`` CLI commands.
"""

from __future__ import annotations

import os
from typing import Any, Dict

import click
from flask import Flask, request

from impactmatrix import config, store
from impactmatrix.sample_data import load_sample_data
from impactmatrix.server import app as wsgi_app
from impactmatrix.server import configure_logging

configure_logging()

flask_app = Flask(__name__, static_folder=None, template_folder=None)
flask_app.config["SECRET_KEY"] = config.SECRET_KEY

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


@flask_app.before_request
def setup_request():
    # Health probes must not depend on the database bootstrap.
    if request.path in {"/healthz"}:
        return None
    store.ensure_bootstrap()
    return None


@flask_app.route("/", defaults={"path": ""}, methods=HTTP_METHODS)
@flask_app.route("/<path:path>", methods=HTTP_METHODS)
def catch_all(path):
    """Delegate every route to the WSGI app and relay its response."""
    response_data: Dict[str, Any] = {}

    def start_response(status, headers, exc_info=None):
        response_data["status"] = status
        response_data["headers"] = headers
        return lambda s: None

    body = b"".join(wsgi_app(request.environ, start_response))
    status_code = int(response_data.get("status", "200 OK").split()[0])
    response = flask_app.make_response((body, status_code))
    for header_name, header_value in response_data.get("headers", []):
        response.headers[header_name] = header_value
    return response


@flask_app.cli.command("init-db")
def init_db():
    """Create the database schema."""
    store.init_db()
    click.echo("Database initialized successfully!")


@flask_app.cli.command("load-sample-data")
@click.option("--reset", is_flag=True, help="Replace existing sample content.")
def load_sample_data_command(reset):
    """Insert the demo organization, project and matrix."""
    store.ensure_bootstrap()
    conn = store.db_connect()
    try:
        counts = load_sample_data(conn, reset=reset)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    click.echo(f"Sample data: {counts}")


if __name__ == "__main__":
    flask_app.run(
        host=config.HOST,
        port=config.PORT,
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
        threaded=True,
    )
