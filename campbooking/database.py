# campbooking/database.py
import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("campbooking.database")


class Base(DeclarativeBase):
    pass


class Database:
    """Storage handle: built once at startup, passed down, disposed at shutdown."""

    def __init__(self, url: str):
        self.url = url
        self.engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    def init(self):
        if self.engine is not None:
            return
        kwargs = {"pool_pre_ping": True}
        if self.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            # in-memory databases live only as long as their single connection
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.url, **kwargs)
        self._sessionmaker = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        # import models so the tables are registered on Base.metadata
        from campbooking import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialised (%s)", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database.init() has not been called")
        return self._sessionmaker()

    def ping(self):
        with self.session() as db:
            db.execute(text("SELECT 1"))

    def shutdown(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self._sessionmaker = None
