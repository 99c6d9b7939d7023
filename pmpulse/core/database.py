import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from pmpulse.core.config import settings

# Create database engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=300,
    echo=False,
    future=True,
)

# Create session factory
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # rows handed to Celery tasks stay readable after commit
    future=True,
)

# Create base class for models
Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        # Returns the connection to the pool; committed work is untouched.
        db.close()


def generate_uuid() -> str:
    """Local primary key for synced entities; never the AppFolio id"""
    return str(uuid.uuid4())
