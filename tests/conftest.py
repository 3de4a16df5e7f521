"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import itertools

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from voicenotify.database.models import Base
from voicenotify.engine.events import Occupant
from voicenotify.errors import TransientSendFailure, Unreachable

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Voice Notify tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Fake Discord directory
# ---------------------------------------------------------------------------
class FakeDirectory:
    """In-memory stand-in for :class:`DiscordDirectory`.

    - ``channels[(guild_id, channel_id)]`` → occupant list; missing means gone
    - ``unreachable`` user ids raise :class:`Unreachable` on send and edit
    - ``failing_sends`` user ids raise :class:`TransientSendFailure` on send
    - ``failing_edits`` message ids raise :class:`TransientSendFailure` on edit
    - ``broken_channels`` raise on lookup
    """

    def __init__(self) -> None:
        self.channels: dict[tuple[int, int], list[Occupant]] = {}
        self.unreachable: set[int] = set()
        self.failing_sends: set[int] = set()
        self.failing_edits: set[int] = set()
        self.broken_channels: set[tuple[int, int]] = set()
        self.sent: list[tuple[int, int, str]] = []
        self.edits: list[tuple[int, int, str]] = []
        self._ids = itertools.count(9000)

    def sent_to(self, user_id: int) -> list[str]:
        return [content for uid, _, content in self.sent if uid == user_id]

    def edits_for(self, user_id: int) -> list[str]:
        return [content for uid, _, content in self.edits if uid == user_id]

    async def get_occupants(self, guild_id: int, channel_id: int) -> list[Occupant] | None:
        if (guild_id, channel_id) in self.broken_channels:
            raise RuntimeError("gateway lookup failed")
        return self.channels.get((guild_id, channel_id))

    async def send_dm(self, user_id: int, content: str) -> int:
        if user_id in self.unreachable:
            raise Unreachable(user_id, "DMs closed")
        if user_id in self.failing_sends:
            raise TransientSendFailure(user_id, "500")
        message_id = next(self._ids)
        self.sent.append((user_id, message_id, content))
        return message_id

    async def edit_dm(self, user_id: int, message_id: int, content: str) -> None:
        if user_id in self.unreachable:
            raise Unreachable(user_id, "DMs closed")
        if message_id in self.failing_edits:
            raise TransientSendFailure(user_id, "message gone")
        self.edits.append((user_id, message_id, content))


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


def make_occupant(user_id: int, name: str, bot: bool = False) -> Occupant:
    return Occupant(id=user_id, username=name.lower(), display_name=name, bot=bot)


@pytest.fixture
def occupant():
    """Factory: ``occupant(201, "Alice")``."""
    return make_occupant
