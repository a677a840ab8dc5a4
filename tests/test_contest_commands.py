from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import discord
import pytest

from src.core.config import BotConfig
from src.modules.meme_contest.cogs import contest_commands
from src.modules.meme_contest.cogs.contest_commands import (
    GENERIC_ERROR_REPLY,
    NO_CONTEST_REPLY,
    SCAN_IN_PROGRESS_REPLY,
    ContestCommands,
)
from src.modules.meme_contest.models import Category, ContestWindow, LeaderboardEntry
from src.modules.meme_contest.services.announcement_service import AnnouncementService
from src.modules.meme_contest.services.contest_service import weekly_window
from src.modules.meme_contest.services.history_service import HistoryScanner
from tests.fakes import CHANNEL_ID, FakeChannel, FakeMessage, FakeReaction, FakeUser

NOW = datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc)


def make_interaction():
    return SimpleNamespace(
        user=SimpleNamespace(id=1),
        guild_id=2,
        channel_id=CHANNEL_ID,
        response=SimpleNamespace(
            send_message=AsyncMock(),
            defer=AsyncMock(),
            is_done=Mock(return_value=False),
        ),
        followup=SimpleNamespace(send=AsyncMock()),
        edit_original_response=AsyncMock(),
    )


@pytest.fixture
def channel():
    return FakeChannel([])


@pytest.fixture
def announcement_service():
    return SimpleNamespace(announce_to_channel=AsyncMock(return_value=1), announce_followups=AsyncMock(return_value=1))


@pytest.fixture
def cog(classifier, contest_service, leaderboard_service, announcement_service, channel):
    bot = SimpleNamespace(
        config=BotConfig(channel_id=CHANNEL_ID),
        contest_service=contest_service,
        leaderboard_service=leaderboard_service,
        history_scanner=HistoryScanner(classifier),
        announcement_service=announcement_service,
        get_channel=Mock(return_value=channel),
        fetch_channel=AsyncMock(),
    )
    return ContestCommands(bot)


class TestStartAndWinner:
    @pytest.mark.asyncio
    async def test_start_contest(self, cog, contest_service):
        interaction = make_interaction()

        await cog._run_command(interaction, "startcontest", cog._internal_start)

        interaction.response.send_message.assert_awaited_once_with("El concurso ha comenzado!")
        assert await contest_service.is_running()

    @pytest.mark.asyncio
    async def test_winner_without_contest(self, cog):
        interaction = make_interaction()

        await cog._run_command(interaction, "winner", cog._internal_winner)

        interaction.response.send_message.assert_awaited_once_with(NO_CONTEST_REPLY)

    @pytest.mark.asyncio
    async def test_winner_with_empty_contest(self, cog, contest_service, announcement_service):
        await contest_service.start()
        interaction = make_interaction()

        await cog._run_command(interaction, "winner", cog._internal_winner)

        interaction.response.send_message.assert_awaited_once_with("No winners found for this week.")
        announcement_service.announce_to_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_winner_announces_non_empty_categories(
        self, cog, contest_service, ledger_service, announcement_service, channel
    ):
        contest = await contest_service.start()
        await ledger_service.record(55, 7, Category.MEME, contest.id)
        interaction = make_interaction()

        await cog._run_command(interaction, "winner", cog._internal_winner)

        interaction.response.send_message.assert_awaited_once_with("Ganadores anunciados!")
        announcement_service.announce_to_channel.assert_awaited_once_with(
            channel, Category.MEME, [LeaderboardEntry(55, 1)]
        )

    @pytest.mark.asyncio
    async def test_unexpected_error_gets_generic_reply(self, cog):
        interaction = make_interaction()

        await cog._run_command(interaction, "winner", AsyncMock(side_effect=RuntimeError("boom")))

        interaction.response.send_message.assert_awaited_once_with(GENERIC_ERROR_REPLY)

    @pytest.mark.asyncio
    async def test_missing_channel_configuration(self, cog):
        cog.config = BotConfig(channel_id=None)
        interaction = make_interaction()

        await cog._run_command(interaction, "gettop", cog._internal_batch_announce, ContestWindow(NOW, NOW))

        interaction.followup.send.assert_not_awaited()
        interaction.response.send_message.assert_awaited_once()


class TestBatchAnnounce:
    @pytest.mark.asyncio
    async def test_no_messages_in_range(self, cog):
        interaction = make_interaction()

        await cog._internal_batch_announce(interaction, ContestWindow(NOW - timedelta(days=1), NOW))

        interaction.response.defer.assert_awaited_once()
        interaction.edit_original_response.assert_awaited_once_with(
            content="No messages found in the specified date range."
        )

    @pytest.mark.asyncio
    async def test_announces_each_category(self, cog, channel, announcement_service):
        channel.messages = [FakeMessage(5, NOW - timedelta(hours=1), [FakeReaction("😂", [FakeUser(1)])])]
        interaction = make_interaction()

        await cog._internal_batch_announce(interaction, ContestWindow(NOW - timedelta(days=1), NOW))

        calls = announcement_service.announce_followups.await_args_list
        assert [call.args[1] for call in calls] == [Category.MEME, Category.BONE]
        assert calls[0].args[2] == [LeaderboardEntry(5, 1)]
        interaction.edit_original_response.assert_awaited_with(content="Ganadores anunciados!")

    @pytest.mark.asyncio
    async def test_scan_in_progress(self, cog):
        interaction = make_interaction()
        await cog.history_scanner.scan_lock.acquire()
        try:
            await cog._internal_batch_announce(interaction, ContestWindow(NOW - timedelta(days=1), NOW))
        finally:
            cog.history_scanner.scan_lock.release()

        interaction.edit_original_response.assert_awaited_once_with(content=SCAN_IN_PROGRESS_REPLY)


class TestWeeklyAnnouncement:
    @pytest.mark.asyncio
    async def test_each_closed_week_is_announced_once(self, cog, channel):
        assert await cog.announce_closed_week(NOW) is True
        assert await cog.announce_closed_week(NOW + timedelta(hours=1)) is False
        # 下一个周五中午之后是新的一周
        assert await cog.announce_closed_week(NOW + timedelta(days=3)) is True

        assert [sent['content'] for sent in channel.sent] == [
            "No winners found for meme.", "No winners found for bone.",
        ] * 2

    @pytest.mark.asyncio
    async def test_skips_while_scan_running(self, cog):
        await cog.history_scanner.scan_lock.acquire()
        try:
            assert await cog.announce_closed_week(NOW) is False
        finally:
            cog.history_scanner.scan_lock.release()
        assert cog.last_announced_end is None


def failing_on_call(channel, call_number, error):
    """让 channel.send 在第 call_number 次调用时抛出 error。"""
    original = channel.send
    calls = {'n': 0}

    async def send(content=None, files=None):
        calls['n'] += 1
        if calls['n'] == call_number:
            raise error
        await original(content=content, files=files)

    channel.send = send


class TestWeeklyAnnouncementWinners:
    @pytest.mark.asyncio
    async def test_posts_winners_from_scanned_messages(self, cog, channel, announcement_service):
        in_week = FakeMessage(11, datetime(2024, 5, 8, 12, 0, tzinfo=timezone.utc),
                              [FakeReaction("😂", [FakeUser(1), FakeUser(2)])])
        before_week = FakeMessage(10, datetime(2024, 5, 3, 16, 0, tzinfo=timezone.utc),
                                  [FakeReaction("😂", [FakeUser(1)])])
        channel.messages = [in_week, before_week]

        assert await cog.announce_closed_week(NOW) is True

        call = announcement_service.announce_to_channel.await_args
        assert call.args[:3] == (channel, Category.MEME, [LeaderboardEntry(11, 2)])
        assert call.args[3] == {11: in_week}
        assert [sent['content'] for sent in channel.sent] == ["No winners found for bone."]

    @pytest.mark.asyncio
    async def test_failed_post_does_not_repost_next_tick(self, cog, channel):
        cog.announcement_service = AnnouncementService()
        channel.messages = [FakeMessage(
            11, datetime(2024, 5, 8, 12, 0, tzinfo=timezone.utc),
            [FakeReaction("😂", [FakeUser(1)]), FakeReaction("🦴", [FakeUser(2)])],
        )]
        failing_on_call(channel, 2, discord.Forbidden(Mock(status=403, reason="Forbidden"), "Missing Access"))

        with pytest.raises(discord.Forbidden):
            await cog.announce_closed_week(NOW)
        assert await cog.announce_closed_week(NOW + timedelta(minutes=15)) is False

        assert len(channel.sent) == 1
        assert "Meme de la semana" in channel.sent[0]['content']


class TestSlashCommands:
    @pytest.fixture
    def clock(self, monkeypatch):
        def set_now(now):
            monkeypatch.setattr(contest_commands, "utcnow", lambda: now)
        set_now(NOW)
        return set_now

    @pytest.mark.asyncio
    async def test_gettop_scans_current_week(self, cog, channel, clock):
        interaction = make_interaction()

        await ContestCommands.get_top.callback(cog, interaction)

        window = weekly_window(NOW, cog.config.timezone)
        assert window.start == datetime(2024, 5, 10, 17, 0, tzinfo=timezone.utc)
        assert channel.history_calls == [{'limit': None, 'before': NOW}]
        interaction.edit_original_response.assert_awaited_once_with(
            content="No messages found in the specified date range."
        )

    @pytest.mark.asyncio
    async def test_memeoftheyear_defaults_to_local_year(self, cog, channel, clock):
        # 2025-01-01 03:00 UTC 在波哥大仍是 2024 年最后一天
        local_new_years_eve = datetime(2025, 1, 1, 3, 0, tzinfo=timezone.utc)
        clock(local_new_years_eve)
        interaction = make_interaction()

        await ContestCommands.meme_of_the_year.callback(cog, interaction)

        interaction.response.defer.assert_awaited_once()
        assert channel.history_calls == [{'limit': None, 'before': local_new_years_eve}]

    @pytest.mark.asyncio
    async def test_memeoftheyear_past_year_is_capped_at_year_end(self, cog, channel, clock):
        interaction = make_interaction()

        await ContestCommands.meme_of_the_year.callback(cog, interaction, year=2023)

        assert channel.history_calls == [{'limit': None, 'before': datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)}]

    @pytest.mark.asyncio
    async def test_memeoftheyear_refuses_future_year(self, cog, channel, clock):
        interaction = make_interaction()

        await ContestCommands.meme_of_the_year.callback(cog, interaction, year=2030)

        interaction.response.send_message.assert_awaited_once_with("El año 2030 aún no ha comenzado.")
        interaction.response.defer.assert_not_awaited()
        assert channel.history_calls == []


class TestWinnerUsesOneContest:
    @pytest.mark.asyncio
    async def test_restart_between_categories_does_not_mix_contests(
        self, cog, contest_service, ledger_service, leaderboard_service, announcement_service
    ):
        contest = await contest_service.start()
        await ledger_service.record(55, 7, Category.MEME, contest.id)
        await ledger_service.record(56, 8, Category.BONE, contest.id)

        rank = leaderboard_service.rank
        ranked_ids = []

        async def rank_then_restart(category, contest_id, limit):
            ranked_ids.append(contest_id)
            entries = await rank(category, contest_id, limit)
            await contest_service.start()
            return entries

        leaderboard_service.rank = rank_then_restart
        interaction = make_interaction()

        await cog._run_command(interaction, "winner", cog._internal_winner)

        assert ranked_ids == [contest.id, contest.id]
        assert [call.args[2] for call in announcement_service.announce_to_channel.await_args_list] == [
            [LeaderboardEntry(55, 1)], [LeaderboardEntry(56, 1)],
        ]


class TestRegistrationMode:
    @pytest.mark.asyncio
    async def test_tick_not_started_when_only_registering(
        self, classifier, contest_service, leaderboard_service, announcement_service, channel
    ):
        bot = SimpleNamespace(
            config=BotConfig(channel_id=CHANNEL_ID, weekly_check_minutes=5),
            registration_only=True,
            contest_service=contest_service,
            leaderboard_service=leaderboard_service,
            history_scanner=HistoryScanner(classifier),
            announcement_service=announcement_service,
            get_channel=Mock(return_value=channel),
        )

        cog = ContestCommands(bot)

        assert not cog.weekly_announcement.is_running()
