import asyncio
import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

import httpx
from sqlalchemy.pool import StaticPool

from exam_portal.auth_utils import hash_password
from exam_portal.models import (
    Question,
    QuestionTestCase,
    User,
)
from exam_portal.services import question_service
from exam_portal.services.code_runner import ExecutionResult
from exam_portal.errors import CodeExecutionError

# Use sqlite:///:memory: with poolclass=StaticPool to share the same in-memory DB across threads
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # CRITICAL: Ensures all connections share the same in-memory database
)

# Hashing is slow; every fixture user shares one password
TEST_PASSWORD = "testpass123"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture(scope="session")
def engine():
    """Provide test engine as a fixture."""
    return test_engine


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield  # run the test

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM examanswer"))
        session.exec(text("DELETE FROM examquestionslot"))
        session.exec(text("DELETE FROM examalloweduser"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM questiontestcase"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM user"))
        session.commit()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine for tests that use several threads."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'threads.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FAKE CODE RUNNER
# ============================================================================


class FakeRunner:
    """Stand-in for the remote sandbox.

    ``outputs`` maps stdin -> stdout. Entries whose value is an exception are
    raised instead; stdin missing from the map yields an empty stdout.
    """

    def __init__(self, outputs=None, execution_error=None):
        self.outputs = outputs or {}
        self.execution_error = execution_error
        self.calls = []

    def execute(self, source_code, language, stdin=""):
        self.calls.append((source_code, language, stdin))
        value = self.outputs.get(stdin, "")
        if isinstance(value, Exception):
            raise value
        return ExecutionResult(stdout=value, execution_error=self.execution_error)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def unreachable_error():
    return CodeExecutionError("connection refused")


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(name, email, role="user", **extra):
    with Session(test_engine) as session:
        user = User(
            name=name,
            email=email,
            password_hash=TEST_PASSWORD_HASH,
            role=role,
            **extra,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    """Create a sample admin user."""
    return _create_user("Admin User", "admin@example.com", role="admin")


@pytest.fixture
def candidate():
    """Create the user who takes exams."""
    return _create_user("Alice Candidate", "alice@example.com")


@pytest.fixture
def other_user():
    """A second regular user who does not own the exams."""
    return _create_user("Bob Other", "bob@example.com")


@pytest.fixture
def make_choice_question(admin_user):
    def factory(section="mcqs", number=1, answer="B", text="Pick one"):
        with Session(test_engine) as session:
            question = question_service.create_question(
                session,
                created_by=admin_user.id,
                section=section,
                question_number=number,
                text=text,
                options=["A", "B", "C", "D"],
                answer=answer,
            )
            return question.id

    return factory


@pytest.fixture
def make_coding_question(admin_user):
    def factory(number=1, cases=None, text="Echo the input doubled"):
        cases = cases or [
            {"input": "1", "expected_output": "2"},
            {"input": "2", "expected_output": "4"},
            {"input": "3", "expected_output": "6"},
        ]
        with Session(test_engine) as session:
            question = question_service.create_question(
                session,
                created_by=admin_user.id,
                section="coding",
                question_number=number,
                text=text,
                test_cases=cases,
            )
            return question.id

    return factory


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from exam_portal.database import get_session
from exam_portal.deps import get_current_user, get_runner
from exam_portal.main import app


@pytest.fixture
def client(fake_runner):
    """Create test client using httpx AsyncClient with sync wrapper."""

    def override_get_session():
        # CRITICAL: Must use same test_engine instance that has tables
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_runner] = lambda: fake_runner

    loop = asyncio.new_event_loop()

    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    class SyncClientWrapper:
        def __init__(self, async_client, loop):
            self.async_client = async_client
            self.loop = loop

        def get(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

        def post(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

        def put(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.put(*args, **kwargs))

        def delete(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

        def login_as(self, user):
            """Skip the cookie flow and act as ``user`` for following requests."""
            app.dependency_overrides[get_current_user] = lambda: user

    sync_client = SyncClientWrapper(async_client, loop)

    yield sync_client

    # Cleanup
    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()
