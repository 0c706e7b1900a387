from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.settings import settings


def engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    options: dict = {"pool_pre_ping": True, "pool_timeout": settings.db_pool_timeout_seconds}
    if database_url.startswith("postgresql"):
        options["connect_args"] = {
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}"
        }
    return options


DATABASE_URL = settings.database_url

engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
