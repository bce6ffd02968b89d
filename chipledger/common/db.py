"""Database bootstrap helpers shared by all services."""

from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from chipledger.common.config import settings


# Single SQLAlchemy engine per process.
engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _bound_statement_time(dbapi_connection, _record) -> None:
    """Cap every statement so a stuck transaction fails instead of hanging."""

    if engine.dialect.name != "postgresql":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute(f"SET statement_timeout = {int(settings.db_statement_timeout_ms)}")
    cursor.close()


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def insert_if_absent(db, model, values: dict) -> bool:
    """Insert one row unless any unique constraint already holds a match.

    Returns True when this call inserted the row. A False result means a
    concurrent or earlier writer owns the key; callers branch on it instead of
    catching integrity errors.
    """

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")
    result = db.execute(stmt)
    return result.rowcount == 1
