import logging

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from dealerbook.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    # models must be imported so their tables are registered on Base.metadata
    from dealerbook import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def check_connection(bind=None) -> bool:
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("database connection failed")
        return False
    return True
