from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # Every connection must see the same in-memory database.
        options["poolclass"] = StaticPool
    return options


class Database:
    def __init__(self, url: str) -> None:
        if not url:
            raise RuntimeError("DATABASE_URL is not configured")
        self.url = url
        self.engine = create_engine(url, **_engine_options(url))
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    def init_db(self) -> None:
        from videoguard.models import audit as _audit  # noqa: F401
        from videoguard.models import enrollment as _enrollment  # noqa: F401
        from videoguard.models import session as _session  # noqa: F401
        from videoguard.models import view as _view  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
