from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .logging import structlog
from .services.errors import ReferentialConflict, ServiceError, TransactionFailure


Base = declarative_base()

logger = structlog.get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory, built once at startup and injected into the app."""

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 0,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
    ):
        self.url = url
        is_sqlite = url.startswith("sqlite")
        self.engine: Engine = create_engine(
            url,
            future=True,
            echo=echo,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        # IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        # models must be imported so every table is registered on Base.metadata
        from .models import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "23503":
        return True
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in (1451, 1452):  # MySQL row is referenced / no referenced row
        return True
    return "foreign key" in str(orig).lower()


@contextmanager
def transaction(db: Session, *, conflict_message: Optional[str] = None) -> Iterator[Session]:
    """
    Run a unit of work atomically: commit when the block exits cleanly,
    roll back on any exception.

    Domain errors propagate unchanged. Foreign-key violations surface as
    ReferentialConflict, every other database error as TransactionFailure.
    """
    try:
        yield db
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if _is_foreign_key_violation(exc):
            logger.warning("referential_conflict", error=str(exc.orig))
            raise ReferentialConflict(conflict_message) from exc
        logger.error("transaction_failed", error=str(exc.orig))
        raise TransactionFailure() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("transaction_failed", error=str(exc))
        raise TransactionFailure() from exc
    except Exception:
        db.rollback()
        raise
