import os
import logging
from sqlalchemy.orm import Session
from dotenv import load_dotenv

from lending import crud
from lending.schemas import UserCreate
from lending.storage import SessionLocal, init_db

load_dotenv()
logger = logging.getLogger(__name__)

DEMO_PASSWORD = os.getenv("SEED_PASSWORD", "password")

DEMO_USERS = [
    ("librarian@books.com", "librarian"),
    ("member@books.com", "member"),
]


def seed_users(db: Session, password: str = DEMO_PASSWORD) -> list:
    """Create the demo accounts that don't exist yet. Returns the new users."""
    created = []
    for email, role in DEMO_USERS:
        if crud.find_user_by_email(db, email) is not None:
            continue
        user = crud.create_user_record(
            db,
            UserCreate(
                email=email,
                password=password,
                password_confirmation=password,
                roles=[role],
            ),
        )
        logger.info(f"Seeded {role} account {email}")
        created.append(user)
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    with SessionLocal() as db:
        seed_users(db)
