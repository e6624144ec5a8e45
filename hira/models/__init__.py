"""
HIRA Lifecycle Engine
Shared SQLAlchemy handle.

Every model module imports ``db`` from here so that a single
``db.init_app(app)`` call in the app factory binds all tables.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
