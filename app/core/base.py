"""
Base module for SQLAlchemy models.

Models import ``Base`` from here rather than from app.core.database to avoid
circular imports.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
