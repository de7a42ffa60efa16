"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-approval-templates
    gunicorn wsgi:app
"""

from orgadmin import create_app

app = create_app()
