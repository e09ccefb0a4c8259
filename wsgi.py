"""
WSGI entry point (gunicorn) and Flask-Migrate / Alembic app.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi retry-orphaned-identities
"""

from portal import create_app

app = create_app()
