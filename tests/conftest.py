import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from dotenv import load_dotenv

from lending.main import app, get_db
from lending.models import Base, Role, User
from lending.crud import create_book, hash_password
from lending.schemas import BookCreate
from lending.storage import init_db

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DB_URL", "sqlite:///./test.db")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "password123"


@pytest.fixture(scope="function")
def db_session():
    init_db(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Opens extra sessions on the test database, as separate requests would."""
    return TestingSessionLocal


@pytest.fixture(scope="function")
def client(db_session):
    app.state.testing = True

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture
def make_user(db_session):
    def _make_user(email: str, role: str = "member", token: str | None = None) -> User:
        user = User(email=email, hashed_password=hash_password(PASSWORD), auth_token=token)
        user.roles.append(db_session.query(Role).filter(Role.name == role).one())
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def librarian(make_user):
    return make_user("librarian@example.com", "librarian", token="librarian-token")


@pytest.fixture
def member(make_user):
    return make_user("member@example.com", "member", token="member-token")


@pytest.fixture
def another_member(make_user):
    return make_user("another@example.com", "member", token="another-token")


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {user.auth_token}"}

    return _auth_headers


@pytest.fixture
def test_book(db_session):
    return create_book(
        db_session,
        BookCreate(
            title="Test Book",
            author="Test Author",
            genre="Fiction",
            isbn="1234567890",
            copies=5,
        ),
    )


@pytest.fixture
def book_with_one_copy(db_session):
    return create_book(
        db_session,
        BookCreate(
            title="Limited Book",
            author="Test Author",
            genre="Fiction",
            isbn="1111111111",
            copies=1,
        ),
    )
