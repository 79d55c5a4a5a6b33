#!/usr/bin/env python3
"""WSGI entry point for production deployment.

- Gunicorn: gunicorn wsgi:application
- Waitress: waitress-serve --port=8080 wsgi:application
"""

from impactmatrix.flask_app import flask_app

application = flask_app

if __name__ == "__main__":
    application.run()
