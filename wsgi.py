"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run-notifications --dry-run
    flask --app wsgi db upgrade
"""

from sparks import create_app

app = create_app()
