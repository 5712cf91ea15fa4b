import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from threat_inspector.config import settings

logger = logging.getLogger(__name__)

# SQLite needs cross-thread access for the FastAPI worker pool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    """Dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database tables"""
    # Import models here so they register with 'Base'
    import threat_inspector.models  # noqa: F401

    logger.info("🔄 Creating cache and history tables...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ Tables ready")
