"""Create the update-log table for local development (no migrations)."""

import logging

from app.database import Base, engine
import app.models  # noqa: F401  registers UserUpdate on Base.metadata

logger = logging.getLogger(__name__)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Update log tables created on %s", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
