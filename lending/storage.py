import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = os.getenv(
    "SQLALCHEMY_DATABASE_URL", "sqlite:///./library.db"
)

connect_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create missing tables and make sure both roles exist."""
    from lending.models import Base, Role
    from lending.permissions import RoleName

    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    session = sessionmaker(bind=bind)()
    try:
        for role_name in RoleName:
            if not session.query(Role).filter(Role.name == role_name.value).first():
                session.add(Role(name=role_name.value))
                logger.info(f"Seeded role: {role_name.value}")
        session.commit()
    finally:
        session.close()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
