"""
Database package
"""

from .connection import SessionLocal, configure_engine, get_db, init_db
from .models import Base

__all__ = ['SessionLocal', 'configure_engine', 'get_db', 'init_db', 'Base']
