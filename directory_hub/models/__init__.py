"""
Directory Hub: ORM models.

A single Flask-SQLAlchemy instance is shared by every model module:

    from directory_hub.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
