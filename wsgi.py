"""
WSGI entry point for the HIRA service.

Usage:
    flask --app wsgi run
    flask --app wsgi db migrate -m "description"   # Flask-Migrate
    flask --app wsgi db upgrade

APP_ENV selects the configuration (development / testing / production).
"""

from hira import create_app

app = create_app()
