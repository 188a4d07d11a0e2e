import base64
import json
import pytest
import pytest_asyncio
from datetime import datetime
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

from app.backend.models.db_models import AttendanceLog, Team, User
from app.backend.services.daily_aggregator import DailyAggregator
from app.backend.services.errors import WriteError
from app.backend.services.log_store import LogStore
from app.backend.services.monthly_cache import MonthlyCacheManager, compute_data_hash
from app.backend.services.user_directory import UserDirectory

TOKYO = ZoneInfo("Asia/Tokyo")


def make_log(uid: str, log_type: str, day: int, hour: int = 9) -> AttendanceLog:
    moment = datetime(2025, 4, day, hour, tzinfo=TOKYO)
    return AttendanceLog(id=f"{uid}_{int(moment.timestamp() * 1000)}", uid=uid, type=log_type, timestamp=moment)


async def put(redis_client, log: AttendanceLog):
    await redis_client.add_log(log.timestamp.date().isoformat(), log)


def build_manager(redis_client, db_client=None) -> MonthlyCacheManager:
    log_store = LogStore(redis_client=redis_client, db_client=db_client)
    directory = UserDirectory(redis_client=redis_client)
    aggregator = DailyAggregator(log_store=log_store, user_directory=directory)
    aggregator.aggregate = AsyncMock(wraps=aggregator.aggregate)
    return MonthlyCacheManager(
        redis_client=redis_client, log_store=log_store, user_directory=directory, daily_aggregator=aggregator
    )


@pytest_asyncio.fixture
async def seeded_redis(redis_client):
    await redis_client.save_team(Team(id="t1", name="Robotics"))
    await redis_client.save_user(User(uid="u1", firstname="Taro", lastname="Yamada", grade=10, team_id="t1"))
    await redis_client.save_user(User(uid="u2", firstname="Hanako", lastname="Suzuki", grade=9, team_id="t1"))
    await redis_client.save_user(User(uid="u3", firstname="Jiro", lastname="Sato", grade=8))
    await put(redis_client, make_log("u1", "entry", 1))
    await put(redis_client, make_log("u1", "exit", 1, hour=18))
    await put(redis_client, make_log("u3", "entry", 2))
    return redis_client


def test_compute_data_hash_encodes_counts_and_newest_timestamp():
    logs = [make_log("u1", "entry", 1), make_log("u1", "exit", 3)]
    decoded = json.loads(base64.b64decode(compute_data_hash(logs, [object(), object()])))
    assert decoded == {"logCount": 2, "userCount": 2, "lastLogTimestamp": logs[1].timestamp.isoformat()}


@pytest.mark.asyncio
class TestMonthlyCacheManager:

    async def test_fresh_computation_covers_every_day(self, seeded_redis):
        manager = build_manager(seeded_redis)

        stats = await manager.get_monthly_stats(2025, 4)

        assert len(stats) == 30
        assert stats["2025-04-01"].total_count == 1
        assert stats["2025-04-02"].total_count == 1
        assert stats["2025-04-03"].total_count == 0
        assert stats["2025-04-03"].team_stats == []
        assert (await seeded_redis.get_monthly_cache(2025, 4)).last_log_count == 3

    async def test_cached_result_equals_recomputation(self, seeded_redis):
        manager = build_manager(seeded_redis)
        fresh = await manager.get_monthly_stats(2025, 4)
        assert manager.daily_aggregator.aggregate.await_count == 30

        cached = await manager.get_monthly_stats(2025, 4)

        assert manager.daily_aggregator.aggregate.await_count == 30
        assert cached == fresh

    async def test_new_log_invalidates_cached_result(self, seeded_redis):
        manager = build_manager(seeded_redis)
        before = await manager.get_monthly_stats(2025, 4)

        await put(seeded_redis, make_log("u2", "entry", 2, hour=10))
        after = await manager.get_monthly_stats(2025, 4)

        assert before["2025-04-02"].total_count == 1
        assert after["2025-04-02"].total_count == 2
        assert manager.daily_aggregator.aggregate.await_count == 60

    async def test_invalidate_forces_recomputation(self, seeded_redis):
        manager = build_manager(seeded_redis)
        await manager.get_monthly_stats(2025, 4)

        await manager.invalidate(2025, 4)
        assert await seeded_redis.get_monthly_cache(2025, 4) is None

        await manager.get_monthly_stats(2025, 4)
        assert manager.daily_aggregator.aggregate.await_count == 60

    async def test_invalidate_all(self, seeded_redis):
        manager = build_manager(seeded_redis)
        await manager.get_monthly_stats(2025, 4)

        assert await manager.invalidate_all() == 1
        assert await seeded_redis.get_monthly_cache(2025, 4) is None

    async def test_invalidate_failure_raises_write_error(self, seeded_redis):
        manager = build_manager(seeded_redis)
        with patch.object(seeded_redis, "tombstone_monthly_cache", AsyncMock(side_effect=ConnectionError("down"))):
            with pytest.raises(WriteError):
                await manager.invalidate(2025, 4)

    async def test_cache_write_failure_does_not_fail_the_call(self, seeded_redis):
        manager = build_manager(seeded_redis)
        with patch.object(seeded_redis, "save_monthly_cache", AsyncMock(side_effect=ConnectionError("down"))):
            stats = await manager.get_monthly_stats(2025, 4)

        assert stats["2025-04-01"].total_count == 1
        assert await seeded_redis.get_monthly_cache(2025, 4) is None

    async def test_cached_members_are_rehydrated(self, seeded_redis):
        manager = build_manager(seeded_redis)
        await manager.get_monthly_stats(2025, 4)

        cached = await manager.get_monthly_stats(2025, 4)

        robotics = cached["2025-04-01"].team_stats[0]
        assert robotics.team_name == "Robotics"
        members = {member.uid: member for grade in robotics.grade_stats for member in grade.users}
        assert members["u1"].is_present is True
        assert members["u1"].firstname == "Taro"
        assert members["u2"].is_present is False


@pytest.mark.asyncio
class TestLegacyMonth:

    async def test_month_without_partitions_uses_legacy_logs(self, redis_client):
        await redis_client.save_user(User(uid="u1", firstname="Taro", lastname="Yamada", grade=10))
        legacy = datetime(2023, 6, 15, 9, tzinfo=TOKYO)
        db_client = AsyncMock()
        db_client.get_logs_in_range.return_value = [
            AttendanceLog(id="1", uid="u1", type="entry", timestamp=legacy)
        ]
        manager = build_manager(redis_client, db_client=db_client)

        stats = await manager.get_monthly_stats(2023, 6)

        assert stats["2023-06-15"].total_count == 1
        assert stats["2023-06-14"].total_count == 0
        manager.daily_aggregator.aggregate.assert_not_awaited()

        again = await manager.get_monthly_stats(2023, 6)
        assert again == stats
        assert (await redis_client.get_monthly_cache(2023, 6)).last_log_count == 1

    async def test_empty_month_without_legacy_store(self, redis_client):
        manager = build_manager(redis_client)

        stats = await manager.get_monthly_stats(2023, 2)

        assert len(stats) == 28
        assert all(day.total_count == 0 for day in stats.values())
