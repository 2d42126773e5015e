"""Initialize SQLite database for local development."""

import logging

from sqlalchemy import create_engine

from barspeed.models import Base
from barspeed.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def init_db():
    """Create all tables in the database."""
    # Use sync engine for table creation
    engine = create_engine(settings.database_url_sync, echo=settings.debug)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
