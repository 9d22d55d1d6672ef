"""
SQLAlchemy Base Configuration for Linkarr

This module provides the declarative base class for all ORM models.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
