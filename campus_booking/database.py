import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./campus_booking.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_document_schema_checked = False
_identity_schema_checked = False


def ensure_document_schema() -> None:
    global _document_schema_checked

    if _document_schema_checked:
        return

    with _schema_lock:
        if _document_schema_checked:
            return

        inspector = inspect(engine)

        if 'documents' not in inspector.get_table_names():
            _document_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('documents')}
        migration_steps = [
            ('created_at', 'ALTER TABLE documents ADD COLUMN created_at TIMESTAMP'),
            ('updated_at', 'ALTER TABLE documents ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)')
            )

        _document_schema_checked = True


def ensure_identity_schema() -> None:
    global _identity_schema_checked

    if _identity_schema_checked:
        return

    with _schema_lock:
        if _identity_schema_checked:
            return

        inspector = inspect(engine)

        if 'auth_sessions' not in inspector.get_table_names():
            _identity_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_auth_sessions_uid ON auth_sessions(uid)')
            )

        _identity_schema_checked = True
