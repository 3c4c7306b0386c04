from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker

from posledger.core.config import settings


def enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite issues its own BEGIN lazily and breaks SAVEPOINT; take over
    # transaction control so Session.begin_nested() works.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection):
        connection.exec_driver_sql("BEGIN")


def build_engine(database_url: str, **overrides) -> Engine:
    engine_kwargs: dict[str, object] = {
        # Detect and recover from stale pooled connections.
        "pool_pre_ping": True,
    }
    is_sqlite = database_url.lower().startswith("sqlite")
    if not is_sqlite:
        engine_kwargs.update(
            {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout_seconds,
                "pool_recycle": settings.db_pool_recycle_seconds,
            }
        )
    engine_kwargs.update(overrides)

    built = create_engine(database_url, **engine_kwargs)
    if is_sqlite:
        enable_sqlite_savepoints(built)
    return built


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
