from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from opsflow.config import DATABASE_URL, SQL_ECHO

# SQLAlchemy setup
engine = create_engine(DATABASE_URL, echo=SQL_ECHO, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
