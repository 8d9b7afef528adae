"""Database base configuration"""
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _mark_interrupted_runs():
    """
    Runs left in `running` state belong to a process that died mid-run.
    Nothing will ever finish them, so close them out as failed on startup.
    """
    from app.models.sync_run import SyncRun, SyncRunStatus  # noqa: WPS433 (runtime import)

    db = SessionLocal()
    try:
        stale = db.query(SyncRun).filter(SyncRun.status == SyncRunStatus.RUNNING).all()
        for run in stale:
            run.status = SyncRunStatus.FAILED
            run.errors = list(run.errors or []) + [
                {"source_id": "", "title": "Sync Error", "message": "Interrupted by server restart"}
            ]
            run.error_count = len(run.errors)
            run.completed_at = datetime.utcnow()
        if stale:
            db.commit()
    finally:
        db.close()


def init_db():
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import app.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=engine)
    _mark_interrupted_runs()
