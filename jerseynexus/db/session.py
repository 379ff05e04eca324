from sqlalchemy import func, inspect, text
from sqlmodel import SQLModel, Session, create_engine, select

from jerseynexus.core.config import settings

# check_same_thread is needed for SQLite, remove for PostgreSQL
connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)


def get_session():
    with Session(engine) as session:
        yield session


def get_engine():
    """Engine for code that opens its own short-lived sessions, like the websocket."""
    return engine


def create_db_and_tables(bind=None):
    # Import models so every table is registered on the metadata
    import jerseynexus.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def check_database(session: Session) -> dict:
    """Connection, dialect, required tables and row counts for /health/database."""
    import jerseynexus.models as models

    bind = session.get_bind()
    result = {"connected": False, "dialect": bind.dialect.name, "tables": {}, "missingTables": []}

    session.connection().execute(text("SELECT 1"))
    result["connected"] = True

    existing = set(inspect(bind).get_table_names())
    required = sorted(SQLModel.metadata.tables.keys())
    result["missingTables"] = [name for name in required if name not in existing]

    for model in (models.User, models.Product, models.Category, models.Order, models.Payment):
        table_name = model.__tablename__
        if table_name in existing:
            result["tables"][table_name] = session.exec(select(func.count()).select_from(model)).one()

    result["healthy"] = result["connected"] and not result["missingTables"]
    return result
