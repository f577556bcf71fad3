"""Shared test fixtures and configuration for pytest."""

from collections.abc import AsyncGenerator, Callable

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from taskboard import models  # noqa: F401  (registers every table on the metadata)
from taskboard.commands import TaskCommands
from taskboard.db.base import Base
from taskboard.models.organization import Organization
from taskboard.models.project import Project, Task
from taskboard.models.user import User
from taskboard.notifications.chat import InMemoryChatSink
from taskboard.notifications.dispatcher import NotificationDispatcher
from taskboard.notifications.email import InMemoryEmailSink
from taskboard.notifications.feed import InMemoryChangeFeed


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy drive BEGIN so SAVEPOINTs behave
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# Side effects
# =============================================================================


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed(queue_size=64, idle_timeout=0.05)


@pytest.fixture
def email_sink() -> InMemoryEmailSink:
    return InMemoryEmailSink()


@pytest.fixture
def chat_sink() -> InMemoryChatSink:
    return InMemoryChatSink()


@pytest.fixture
def dispatcher(feed, email_sink, chat_sink, session_factory) -> NotificationDispatcher:
    return NotificationDispatcher(
        feed=feed,
        email_sink=email_sink,
        chat_sink=chat_sink,
        session_factory=session_factory,
        timeout=1.0,
    )


# =============================================================================
# Users, organization, project
# =============================================================================


async def create_user(db: AsyncSession, username: str, display_name: str | None = None) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        display_name=display_name or username.title(),
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def alice(db: AsyncSession) -> User:
    """Organization owner."""
    return await create_user(db, "alice")


@pytest.fixture
async def bob(db: AsyncSession) -> User:
    """Project editor."""
    return await create_user(db, "bob")


@pytest.fixture
async def carol(db: AsyncSession) -> User:
    """Project reader."""
    return await create_user(db, "carol")


@pytest.fixture
def commands_for(db: AsyncSession, dispatcher: NotificationDispatcher) -> Callable[[User], TaskCommands]:
    """Build the command facade for a user, sharing the test session and sinks."""

    def _for(user: User) -> TaskCommands:
        return TaskCommands(db, user.id, dispatcher)

    return _for


@pytest.fixture
async def organization(alice: User, commands_for) -> Organization:
    return await commands_for(alice).create_organization("Acme", "acme")


@pytest.fixture
async def project(organization: Organization, alice: User, bob: User, carol: User, commands_for) -> Project:
    """Default board (todo, in_progress, review, done) with bob as editor and carol as reader."""
    owner = commands_for(alice)
    project = await owner.create_project(organization.id, "Launch", chat_channel="#launch")
    await owner.add_project_member(project.id, bob.id, "editor")
    await owner.add_project_member(project.id, carol.id, "reader")
    return project


@pytest.fixture
def make_task(project: Project, alice: User, commands_for) -> Callable:
    """Create tasks in the default project as alice."""

    async def _make(title: str = "Task", **fields) -> Task:
        return await commands_for(alice).create_task(project.id, title, **fields)

    return _make


@pytest.fixture
def make_user(db: AsyncSession) -> Callable:
    """Create extra users that belong to no organization or project."""

    async def _make(username: str, display_name: str | None = None) -> User:
        return await create_user(db, username, display_name)

    return _make
