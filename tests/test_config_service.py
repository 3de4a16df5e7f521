"""
tests/test_config_service.py — Guild Configuration Store
=========================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from voicenotify.constants import DEFAULT_MAX_DISPLAY_USERS, DEFAULT_MAX_USERS, DEFAULT_MESSAGE
from voicenotify.database.engine import get_session
from voicenotify.database.models import GuildConfig, MonitoredChannel
from voicenotify.errors import NotConfigured
from voicenotify.services.config_service import (
    find_channel_by_emoji,
    get_channel_config,
    get_guild_settings,
    list_monitored_channels,
    remove_monitored_channel,
    upsert_guild_config,
    upsert_monitored_channel,
)

GUILD = 1


class TestUpsertGuildConfig:
    def test_creates_with_defaults(self, db_engine):
        settings = upsert_guild_config(db_engine, GUILD, "Test Guild")
        assert settings.custom_message == DEFAULT_MESSAGE
        assert settings.max_users == DEFAULT_MAX_USERS
        assert settings.max_display_users == DEFAULT_MAX_DISPLAY_USERS
        assert settings.admin_role_id is None

    def test_defaults_override_on_create_only(self, db_engine):
        upsert_guild_config(db_engine, GUILD, "G", defaults={"max_users": 20})
        settings = upsert_guild_config(db_engine, GUILD, "G", defaults={"max_users": 30})
        assert settings.max_users == 20

    def test_changes_applied_and_others_kept(self, db_engine):
        upsert_guild_config(db_engine, GUILD, "G", custom_message="hi {userList}")
        settings = upsert_guild_config(db_engine, GUILD, "Renamed", max_users=3)
        assert settings.name == "Renamed"
        assert settings.custom_message == "hi {userList}"
        assert settings.max_users == 3

    def test_single_row_per_guild(self, db_engine):
        for _ in range(3):
            upsert_guild_config(db_engine, GUILD, "G", max_display_users=4)
        with get_session(db_engine) as session:
            count = session.scalar(select(func.count()).select_from(GuildConfig))
        assert count == 1

    def test_rejects_unknown_field(self, db_engine):
        with pytest.raises(ValueError):
            upsert_guild_config(db_engine, GUILD, "G", admin_role="x")

    def test_get_missing(self, db_engine):
        assert get_guild_settings(db_engine, 999) is None


class TestMonitoredChannels:
    def test_upsert_then_update_emoji(self, db_engine):
        upsert_monitored_channel(db_engine, GUILD, 10, "Lounge", "🔔")
        info = upsert_monitored_channel(db_engine, GUILD, 10, "Lounge 2", "🎮")
        assert info.emoji == "🎮"
        assert info.channel_name == "Lounge 2"
        with get_session(db_engine) as session:
            count = session.scalar(select(func.count()).select_from(MonitoredChannel))
        assert count == 1

    def test_list_sorted_by_name(self, db_engine):
        upsert_monitored_channel(db_engine, GUILD, 11, "Zeta", "🎮")
        upsert_monitored_channel(db_engine, GUILD, 10, "Alpha", "🔔")
        upsert_monitored_channel(db_engine, 2, 12, "Other guild", "🔔")
        names = [c.channel_name for c in list_monitored_channels(db_engine, GUILD)]
        assert names == ["Alpha", "Zeta"]

    def test_find_by_emoji(self, db_engine):
        upsert_monitored_channel(db_engine, GUILD, 10, "Lounge", "<:pepe:42>")
        assert find_channel_by_emoji(db_engine, GUILD, "<:pepe:42>").channel_id == 10
        assert find_channel_by_emoji(db_engine, GUILD, "🔔") is None
        assert find_channel_by_emoji(db_engine, 2, "<:pepe:42>") is None

    def test_remove(self, db_engine):
        upsert_monitored_channel(db_engine, GUILD, 10, "Lounge", "🔔")
        assert remove_monitored_channel(db_engine, GUILD, 10) is True
        assert remove_monitored_channel(db_engine, GUILD, 10) is False


class TestGetChannelConfig:
    def test_combines_guild_and_channel(self, db_engine):
        upsert_guild_config(db_engine, GUILD, "G", custom_message="{emoji} {userList}", max_display_users=2)
        upsert_monitored_channel(db_engine, GUILD, 10, "Lounge", "🔔")
        config = get_channel_config(db_engine, GUILD, 10)
        assert config.channel_name == "Lounge"
        assert config.emoji == "🔔"
        assert config.custom_message == "{emoji} {userList}"
        assert config.max_display_users == 2

    def test_unconfigured_guild(self, db_engine):
        upsert_monitored_channel(db_engine, GUILD, 10, "Lounge", "🔔")
        with pytest.raises(NotConfigured):
            get_channel_config(db_engine, GUILD, 10)

    def test_unmonitored_channel(self, db_engine):
        upsert_guild_config(db_engine, GUILD, "G")
        with pytest.raises(NotConfigured) as exc_info:
            get_channel_config(db_engine, GUILD, 10)
        assert exc_info.value.channel_id == 10
