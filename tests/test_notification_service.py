"""
tests/test_notification_service.py — Notification Orchestrator
===============================================================

End-to-end behaviour of join / leave / move handling against an in-memory
SQLite database and a fake Discord directory.
"""

from __future__ import annotations

import asyncio
import random
import time
from unittest.mock import AsyncMock, patch

from sqlalchemy import func, select

from voicenotify.database.engine import get_session
from voicenotify.database.models import ChannelSession, NotificationState
from voicenotify.engine.events import ChannelSnapshot, OccupancyEvent, ReactionEvent
from voicenotify.errors import StoreFailure
from voicenotify.services.config_service import (
    list_monitored_channels,
    remove_monitored_channel,
    upsert_guild_config,
    upsert_monitored_channel,
)
from voicenotify.services import session_service
from voicenotify.services.message_update_service import MessageUpdateService
from voicenotify.services.notification_service import NotificationService
from voicenotify.services.session_service import SessionManager
from voicenotify.services.subscription_service import (
    get_channel_subscribers,
    upsert_subscription,
)
from voicenotify.services.throttle import NotificationThrottle

GUILD = 1
LOUNGE = 10
GAMES = 11
U1, U2 = 101, 102


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _configure(engine, subscribers=(U1, U2), max_users: int = 10) -> None:
    upsert_guild_config(engine, GUILD, "Test Guild", max_users=max_users)
    upsert_monitored_channel(engine, GUILD, LOUNGE, "Lounge", "🔔")
    upsert_monitored_channel(engine, GUILD, GAMES, "Games", "🎮")
    for user_id in subscribers:
        upsert_subscription(engine, GUILD, user_id, LOUNGE)


def _service(engine, directory, throttle: NotificationThrottle | None = None) -> NotificationService:
    # Long debounce: tests drive refreshes explicitly with flush()
    sessions = SessionManager(engine)
    updates = MessageUpdateService(sessions, directory, delay=60)
    return NotificationService(engine, sessions, updates, directory, throttle)


def _snapshot(members, channel_id: int = LOUNGE) -> ChannelSnapshot:
    name = "Lounge" if channel_id == LOUNGE else "Games"
    return ChannelSnapshot(channel_id=channel_id, name=name, occupants=tuple(members))


def _join(member, present, channel_id: int = LOUNGE) -> OccupancyEvent:
    return OccupancyEvent(GUILD, member.id, after=_snapshot(present, channel_id))


def _leave(member, remaining, channel_id: int = LOUNGE) -> OccupancyEvent:
    return OccupancyEvent(GUILD, member.id, before=_snapshot(remaining, channel_id))


def _active_sessions(engine, channel_id: int = LOUNGE) -> int:
    with get_session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(ChannelSession).where(
                ChannelSession.channel_id == channel_id,
                ChannelSession.is_active.is_(True),
            )
        )


def _active_notifications(engine) -> list[tuple[int, int]]:
    with get_session(engine) as session:
        rows = session.execute(
            select(NotificationState.user_id, NotificationState.message_id)
            .where(NotificationState.is_active.is_(True))
            .order_by(NotificationState.user_id)
        ).all()
        return [tuple(r) for r in rows]


# ---------------------------------------------------------------------------
# Full lifecycle
# ---------------------------------------------------------------------------
class TestFullScenario:
    def test_two_subscribers_two_occupants(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice, bob = occupant(201, "Alice"), occupant(202, "Bob")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            after_first_join = _active_notifications(db_engine)

            await service.handle_occupancy_change(_join(bob, [alice, bob]))
            await service.updates.flush()

            await service.handle_occupancy_change(_leave(alice, [bob]))
            await service.updates.flush()

            await service.handle_occupancy_change(_leave(bob, []))
            return after_first_join

        after_first_join = run_async(scenario())

        assert [uid for uid, _ in after_first_join] == [U1, U2]
        assert directory.sent_to(U1) == ["🔊 Users in Lounge: Alice"]
        assert directory.sent_to(U2) == ["🔊 Users in Lounge: Alice"]
        for user_id in (U1, U2):
            assert directory.edits_for(user_id) == [
                "🔊 Users in Lounge: Alice and Bob",
                "🔊 Users in Lounge: Bob",
            ]
        assert _active_sessions(db_engine) == 0
        assert _active_notifications(db_engine) == []

    def test_second_join_does_not_fan_out_again(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice, bob = occupant(201, "Alice"), occupant(202, "Bob")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_occupancy_change(_join(bob, [alice, bob]))
            await service.updates.flush()

        run_async(scenario())
        assert len(directory.sent) == 2
        assert _active_sessions(db_engine) == 1


class TestFanOut:
    def test_present_subscriber_not_notified(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        u1 = occupant(U1, "Subscriber One")

        run_async(service.handle_occupancy_change(_join(u1, [u1])))
        assert directory.sent_to(U1) == []
        assert directory.sent_to(U2) == ["🔊 Users in Lounge: Subscriber One"]

    def test_no_subscribers_still_starts_session(self, db_engine, directory, occupant):
        _configure(db_engine, subscribers=())
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        run_async(service.handle_occupancy_change(_join(alice, [alice])))
        assert _active_sessions(db_engine) == 1
        assert directory.sent == []

    def test_rate_limit_blocks_quick_second_session(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_occupancy_change(_leave(alice, []))
            await service.handle_occupancy_change(_join(alice, [alice]))

        run_async(scenario())
        assert len(directory.sent) == 2
        assert _active_sessions(db_engine) == 1
        assert _active_notifications(db_engine) == []

    def test_new_session_after_window_notifies_again(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory, NotificationThrottle(min_interval=0))
        alice = occupant(201, "Alice")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_occupancy_change(_leave(alice, []))
            await service.handle_occupancy_change(_join(alice, [alice]))

        run_async(scenario())
        assert len(directory.sent) == 4
        assert len(_active_notifications(db_engine)) == 2

    def test_unreachable_subscriber_not_tracked_or_throttled(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        directory.unreachable.add(U1)
        alice = occupant(201, "Alice")

        run_async(service.handle_occupancy_change(_join(alice, [alice])))
        assert [uid for uid, _ in _active_notifications(db_engine)] == [U2]
        assert service.throttle.is_limited(U1, GUILD) is False
        assert service.throttle.is_limited(U2, GUILD) is True


class TestEligibility:
    def test_unmonitored_channel_ignored(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        run_async(service.handle_occupancy_change(_join(alice, [alice], channel_id=99)))
        assert _active_sessions(db_engine, 99) == 0
        assert directory.sent == []

    def test_unconfigured_guild_ignored(self, db_engine, directory, occupant):
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        run_async(service.handle_occupancy_change(_join(alice, [alice])))
        assert _active_sessions(db_engine) == 0

    def test_over_max_users_skips_refresh(self, db_engine, directory, occupant):
        _configure(db_engine, max_users=1)
        service = _service(db_engine, directory)
        alice, bob = occupant(201, "Alice"), occupant(202, "Bob")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_occupancy_change(_join(bob, [alice, bob]))
            return len(service.updates.queue)

        assert run_async(scenario()) == 0
        assert _active_sessions(db_engine) == 1

    def test_bots_do_not_count_or_trigger(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        jukebox = occupant(999, "Jukebox", bot=True)

        event = OccupancyEvent(GUILD, jukebox.id, after=_snapshot([jukebox]), member_is_bot=True)
        run_async(service.handle_occupancy_change(event))
        assert _active_sessions(db_engine) == 0

    def test_empty_channel_always_ends_session(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            # Channel stops being monitored mid-session
            await asyncio.to_thread(remove_monitored_channel, db_engine, GUILD, LOUNGE)
            await service.handle_occupancy_change(_leave(alice, []))

        run_async(scenario())
        assert _active_sessions(db_engine) == 0


class TestMove:
    def test_move_ends_old_and_starts_new(self, db_engine, directory, occupant):
        _configure(db_engine)
        upsert_subscription(db_engine, GUILD, U1, GAMES)
        service = _service(db_engine, directory, NotificationThrottle(min_interval=0))
        alice = occupant(201, "Alice")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            move = OccupancyEvent(
                GUILD, alice.id,
                before=_snapshot([], LOUNGE),
                after=_snapshot([alice], GAMES),
            )
            await service.handle_occupancy_change(move)

        run_async(scenario())
        assert _active_sessions(db_engine, LOUNGE) == 0
        assert _active_sessions(db_engine, GAMES) == 1
        assert directory.sent_to(U1)[-1] == "🔊 Users in Games: Alice"


class TestOverlappingEvents:
    def test_join_while_session_ends_still_allows_next_session(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory, NotificationThrottle(min_interval=0))
        alice, bob, carol = occupant(201, "Alice"), occupant(202, "Bob"), occupant(203, "Carol")
        real_close = session_service._close_session

        def _slow_close(*args):
            time.sleep(0.3)
            return real_close(*args)

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))

            async def join_mid_end():
                await asyncio.sleep(0.05)
                await service.handle_occupancy_change(_join(bob, [bob]))

            with patch("voicenotify.services.session_service._close_session", _slow_close):
                await asyncio.gather(
                    service.handle_occupancy_change(_leave(alice, [])),
                    join_mid_end(),
                )
            await service.handle_occupancy_change(_join(carol, [bob, carol]))
            service.updates.clear()

        run_async(scenario())
        assert _active_sessions(db_engine) == 1
        assert directory.sent_to(U1) == [
            "🔊 Users in Lounge: Alice",
            "🔊 Users in Lounge: Bob and Carol",
        ]


class TestAtMostOneActiveSession:
    def test_random_join_leave_sequences(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory, NotificationThrottle(min_interval=0))
        pool = [occupant(200 + i, f"User{i}") for i in range(4)]
        rng = random.Random(1234)

        async def scenario():
            present: list = []
            for _ in range(60):
                absent = [m for m in pool if m not in present]
                if absent and (not present or rng.random() < 0.5):
                    member = rng.choice(absent)
                    present.append(member)
                    await service.handle_occupancy_change(_join(member, present))
                else:
                    member = rng.choice(present)
                    present.remove(member)
                    await service.handle_occupancy_change(_leave(member, present))

                active = _active_sessions(db_engine)
                assert active <= 1
                assert active == (1 if present else 0)
            service.updates.clear()

        run_async(scenario())


# ---------------------------------------------------------------------------
# Channel deletion, reactions, lifecycle
# ---------------------------------------------------------------------------
class TestChannelDeleted:
    def test_forgets_channel_everywhere(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_channel_deleted(GUILD, LOUNGE)

        run_async(scenario())
        assert _active_sessions(db_engine) == 0
        assert get_channel_subscribers(db_engine, GUILD, LOUNGE) == []
        assert [c.channel_id for c in list_monitored_channels(db_engine, GUILD)] == [GAMES]


class TestReactions:
    def test_monitored_emoji_subscribes(self, db_engine, directory):
        _configure(db_engine, subscribers=())
        service = _service(db_engine, directory)
        event = ReactionEvent(GUILD, message_id=1, emoji="🎮", user_id=U1)

        run_async(service.handle_reaction_add(event))
        assert get_channel_subscribers(db_engine, GUILD, GAMES) == [U1]

        run_async(service.handle_reaction_remove(event))
        assert get_channel_subscribers(db_engine, GUILD, GAMES) == []

    def test_unmonitored_emoji_is_noop(self, db_engine, directory):
        _configure(db_engine, subscribers=())
        service = _service(db_engine, directory)
        event = ReactionEvent(GUILD, message_id=1, emoji="👍", user_id=U1)

        run_async(service.handle_reaction_add(event))
        assert get_channel_subscribers(db_engine, GUILD, LOUNGE) == []
        assert get_channel_subscribers(db_engine, GUILD, GAMES) == []


class TestLifecycle:
    def test_startup_reconciles_orphans(self, db_engine, directory):
        _configure(db_engine)
        service = _service(db_engine, directory)
        run_async(service.sessions.start_session(GUILD, LOUNGE))
        service.sessions.clear_cache()

        result = run_async(service.initialize_on_startup())
        assert result == {"checked": 1, "ended": 1}
        assert _active_sessions(db_engine) == 0

    def test_shutdown_flushes_pending_refreshes(self, db_engine, directory, occupant):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice, bob = occupant(201, "Alice"), occupant(202, "Bob")

        async def scenario():
            await service.handle_occupancy_change(_join(alice, [alice]))
            await service.handle_occupancy_change(_join(bob, [alice, bob]))
            await service.shutdown()

        run_async(scenario())
        assert directory.edits_for(U1) == ["🔊 Users in Lounge: Alice and Bob"]
        assert len(service.sessions.cache) == 0

    def test_handler_errors_are_logged_not_raised(self, db_engine, directory, occupant, caplog):
        _configure(db_engine)
        service = _service(db_engine, directory)
        alice = occupant(201, "Alice")

        with patch.object(
            service.sessions, "start_session", AsyncMock(side_effect=StoreFailure("db down")),
        ):
            run_async(service.handle_occupancy_change(_join(alice, [alice])))
        assert "Error handling voice state update" in caplog.text

    def test_prune_rate_limits(self, db_engine, directory):
        service = _service(db_engine, directory, NotificationThrottle(horizon=0))
        service.throttle.record(U1, GUILD, now=0.0)
        assert service.prune_rate_limits() == 1
