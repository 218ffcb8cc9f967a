from .models import Base
from .session import engine

from rooster.utils.logging import get_logger

logger = get_logger()


def create_tables():
    Base.metadata.create_all(engine)
    logger.info("Created all tables.")


def drop_tables():
    Base.metadata.drop_all(engine)
    logger.info("Dropped all tables.")


def reset_db():
    logger.info("Resetting database...")
    drop_tables()
    create_tables()
    logger.info("Database reset complete.")


if __name__ == "__main__":
    reset_db()
