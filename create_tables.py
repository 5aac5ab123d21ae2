"""Create the notification schema directly, bypassing Alembic (local development)."""
from loguru import logger

from training_api.db import models  # noqa: F401
from training_api.db.base import Base
from training_api.db.session import engine

if __name__ == "__main__":
    logger.info("Creating tables", tables=sorted(Base.metadata.tables))
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created")
