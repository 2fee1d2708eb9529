from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./assignmentor.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind=None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "auth_users" in tables:
		cols = {c["name"] for c in inspector.get_columns("auth_users")}
		with bind.begin() as conn:
			if "requests_used" not in cols:
				conn.exec_driver_sql("ALTER TABLE auth_users ADD COLUMN requests_used INTEGER DEFAULT 0 NOT NULL")
			if "requests_limit" not in cols:
				conn.exec_driver_sql(
					f"ALTER TABLE auth_users ADD COLUMN requests_limit INTEGER DEFAULT {int(settings.default_requests_limit)} NOT NULL"
				)
	if "assignments" in tables:
		cols = {c["name"] for c in inspector.get_columns("assignments")}
		with bind.begin() as conn:
			if "word_limit" not in cols:
				conn.exec_driver_sql("ALTER TABLE assignments ADD COLUMN word_limit INTEGER")
			if "assessment_name" not in cols:
				conn.exec_driver_sql("ALTER TABLE assignments ADD COLUMN assessment_name VARCHAR(256)")
