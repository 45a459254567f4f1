from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./memora.db"

_engine_kwargs = {}
if DATABASE_URL.startswith("sqlite"):
	_engine_kwargs["connect_args"] = {"check_same_thread": False}
	# In-memory databases only live as long as their one connection
	if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
		_engine_kwargs["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, future=True, **_engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release; (table, column, DDL type)
_ADDITIVE_COLUMNS = [
	("quizzes", "subject", "VARCHAR(128)"),
	("quizzes", "num_questions", "INTEGER DEFAULT 10 NOT NULL"),
	("uploaded_files", "extraction_method", "VARCHAR(32)"),
	("quiz_progress", "attempt_id", "VARCHAR(32)"),
	("chat_sessions", "file_ids", "TEXT"),
	("auth_sessions", "revoked", "BOOLEAN DEFAULT 0 NOT NULL"),
]


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	with engine.begin() as conn:
		for table, column, ddl in _ADDITIVE_COLUMNS:
			if table not in tables:
				continue
			cols = {c["name"] for c in inspector.get_columns(table)}
			if column not in cols:
				conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
