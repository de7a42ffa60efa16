"""
Database handle shared by every model module.

Usage:
    from orgadmin.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
