# backend/tutorlink/api/dependencies/database.py
"""
Request-scoped database session.

Services open their own transactions; this dependency only guarantees that
whatever a request leaves pending is committed on success, rolled back on
error, and that the session is always closed.
"""

import logging
from typing import Generator

from sqlalchemy.orm import Session

from ...database import SessionLocal, get_engine

logger = logging.getLogger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session dependency.

    Yields:
        Database session that will be closed after use
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back request session after error", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
