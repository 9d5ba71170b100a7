"""
EDMS Request Routing
Shared Flask-SQLAlchemy instance.

Usage:
    from edms.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
