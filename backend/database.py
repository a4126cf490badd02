import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./presentations.db")
SQL_ECHO = os.environ.get("SQL_ECHO", "false").lower() == "true"


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    new_engine = create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
    if url.startswith("sqlite"):
        event.listen(new_engine, "connect", _set_sqlite_pragmas)
    return new_engine


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
