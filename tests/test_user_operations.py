import asyncio
from dataclasses import replace

import pytest

from tcbot.data_models.competitors import Category, HardwareRef
from tcbot.data_models.stats import OffsetStats, Stats, TcStats
from tcbot.database.database import Database
from tcbot.operations.user_operations import (
    UserOperations, is_hardware_state_change, is_team_change, is_user_state_change
)
from tcbot.services.state import ParsingState, StateManager, SystemState
from tcbot.services.stats_calculator import TcStatsCalculator
from tcbot.utils.exceptions import NotFoundError, ServiceUnavailable


def _run_operations(tmp_path, stats_store, stats_source, scenario, state_manager=None):
    state_manager = state_manager or StateManager(SystemState.AVAILABLE, ParsingState.ENABLED)

    async def _run():
        db = Database(f"sqlite:///{tmp_path / 'operations_test.db'}")
        await db.initialize()
        try:
            hardware = await db.create_hardware("RTX 3080", multiplier=2.0)
            team_a = await db.create_team("Team A")
            team_b = await db.create_team("Team B")
            calculator = TcStatsCalculator(stats_store, stats_source, state_manager)
            operations = UserOperations(db, calculator, state_manager)
            return await scenario(db, operations, hardware, team_a, team_b)
        finally:
            await db.close()
    return asyncio.run(_run())


def test_change_detection(make_user):
    user = make_user(account_name="Folder", secret_key="ABCDEF1234")
    assert not is_user_state_change(user, replace(user, account_name="folder", secret_key="abcdef1234"))
    assert is_user_state_change(user, replace(user, secret_key="other"))
    assert is_user_state_change(user, make_user(account_name="Folder", secret_key="ABCDEF1234", hardware_id=2))
    assert is_team_change(user, make_user(account_name="Folder", secret_key="ABCDEF1234", team_id=2))
    assert not is_team_change(user, replace(user, display_name="New Name"))

    hardware = HardwareRef(id=1, name="GPU", multiplier=1.0)
    assert is_hardware_state_change(hardware, replace(hardware, multiplier=1.5))
    assert not is_hardware_state_change(hardware, replace(hardware, display_name="Renamed"))


def test_create_user_takes_initial_stats(tmp_path, stats_store, stats_source):
    stats_source.set_total("newfolder", 5_000, 50)

    async def scenario(db, operations, hardware, team_a, team_b):
        return await operations.create_user("newfolder", "New Folder", "key123456789", Category.NVIDIA_GPU,
                                             hardware.id, team_a.id)

    user = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert user.team.name == "Team A"
    assert stats_store.initial[user.id].points == 5_000
    assert stats_store.hourly[user.id].is_empty()


def test_team_update_retires_stats_under_old_team(tmp_path, stats_store, stats_source):
    stats_source.set_total("mover", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("mover", "Mover", "key123456789", Category.AMD_GPU, hardware.id, team_a.id)
        stats_store.hourly[user.id] = TcStats(user_id=user.id, points=200, multiplied_points=400, units=2)
        updated = await operations.apply_user_update(user.id, team_id=team_b.id)
        return updated, team_a

    updated, team_a = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert updated.team.name == "Team B"
    assert len(stats_store.retired) == 1
    assert stats_store.retired[0].team_id == team_a.id
    assert stats_store.retired[0].multiplied_points == 400
    assert stats_store.hourly[updated.id].is_empty()


def test_secret_key_update_moves_stats_to_offset(tmp_path, stats_store, stats_source):
    stats_source.set_total("folder", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("folder", "Folder", "oldkey123456", Category.AMD_GPU, hardware.id, team_a.id)
        stats_store.hourly[user.id] = TcStats(user_id=user.id, points=100, multiplied_points=200, units=1)
        return await operations.apply_user_update(user.id, secret_key="newkey123456")

    updated = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert updated.secret_key == "newkey123456"
    assert stats_store.offsets[updated.id] == OffsetStats(100, 200, 1)
    assert stats_store.retired == []


def test_display_name_update_does_not_touch_stats(tmp_path, stats_store, stats_source):
    stats_source.set_total("folder", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("folder", "Folder", "key123456789", Category.AMD_GPU, hardware.id, team_a.id)
        return await operations.apply_user_update(user.id, display_name="Renamed")

    updated = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert updated.display_name == "Renamed"
    assert stats_store.offsets == {}


def test_hardware_multiplier_update_reconciles_users(tmp_path, stats_store, stats_source):
    stats_source.set_total("first", 1_000, 10)
    stats_source.set_total("second", 2_000, 20)

    async def scenario(db, operations, hardware, team_a, team_b):
        first = await operations.create_user("first", "First", "key111111111", Category.NVIDIA_GPU, hardware.id, team_a.id)
        second = await operations.create_user("second", "Second", "key222222222", Category.NVIDIA_GPU, hardware.id, team_b.id)
        stats_store.hourly[first.id] = TcStats(user_id=first.id, points=10, multiplied_points=20, units=1)
        updated = await operations.apply_hardware_update(hardware.id, multiplier=3.0)
        return updated, first, second

    updated, first, second = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert updated.multiplier == 3.0
    assert stats_store.offsets[first.id] == OffsetStats(10, 20, 1)
    assert stats_store.offsets[second.id] == OffsetStats(0, 0, 0)


def test_updates_refused_while_writes_blocked(tmp_path, stats_store, stats_source):
    async def scenario(db, operations, hardware, team_a, team_b):
        with pytest.raises(ServiceUnavailable):
            await operations.apply_user_update(1, team_id=team_b.id)
        with pytest.raises(ServiceUnavailable):
            await operations.apply_hardware_update(hardware.id, multiplier=0.5)

    _run_operations(tmp_path, stats_store, stats_source, scenario,
                    state_manager=StateManager(SystemState.RESETTING_STATS))


def test_unknown_user_and_fields(tmp_path, stats_store, stats_source):
    async def scenario(db, operations, hardware, team_a, team_b):
        with pytest.raises(NotFoundError):
            await operations.apply_user_update(404, display_name="Nobody")
        with pytest.raises(ValueError):
            await operations.apply_user_update(1, password="hunter2")
        with pytest.raises(NotFoundError):
            await operations.set_user_offset(404, OffsetStats(1, 1, 1))

    _run_operations(tmp_path, stats_store, stats_source, scenario)


def test_set_user_offset(tmp_path, stats_store, stats_source):
    stats_source.set_total("folder", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("folder", "Folder", "key123456789", Category.WILDCARD, hardware.id, team_a.id)
        found = await operations.get_user_by_display_name("folder")
        tc = await operations.set_user_offset(found.id, OffsetStats.from_request(points_offset=50))
        return user, tc

    user, tc = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert stats_store.offsets[user.id] == OffsetStats(50, 100, 0)
    assert (tc.points, tc.multiplied_points) == (50, 100)


def test_deactivation_retires_stats_under_current_team(tmp_path, stats_store, stats_source):
    stats_source.set_total("leaver", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("leaver", "Leaver", "key123456789", Category.AMD_GPU, hardware.id, team_a.id)
        stats_store.hourly[user.id] = TcStats(user_id=user.id, points=300, multiplied_points=600, units=3)
        updated = await operations.apply_user_update(user.id, is_active=False)
        return updated, team_a, await db.get_users_on_team(team_a.id)

    updated, team_a, team_a_users = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert not updated.is_active
    assert team_a_users == []
    assert len(stats_store.retired) == 1
    assert (stats_store.retired[0].team_id, stats_store.retired[0].multiplied_points) == (team_a.id, 600)
    assert stats_store.hourly[updated.id].is_empty()
    assert stats_store.offsets[updated.id] == OffsetStats.empty()


def test_reactivation_takes_new_baseline(tmp_path, stats_store, stats_source):
    stats_source.set_total("returner", 1_000, 10)

    async def scenario(db, operations, hardware, team_a, team_b):
        user = await operations.create_user("returner", "Returner", "key123456789", Category.AMD_GPU, hardware.id, team_a.id)
        await operations.apply_user_update(user.id, is_active=False)
        stats_source.set_total("returner", 4_000, 40)
        found = await operations.get_user_by_display_name("returner")
        return found, await operations.apply_user_update(found.id, is_active=True)

    found, updated = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert not found.is_active
    assert updated.is_active
    assert stats_store.initial[updated.id].points == 4_000
    assert stats_store.retired == []


def test_add_hardware_and_team(tmp_path, stats_store, stats_source):
    async def scenario(db, operations, hardware, team_a, team_b):
        created = await operations.add_hardware("RX 7900", 1.25, display_name="Radeon RX 7900")
        team = await operations.add_team("Team C", description="Third team")
        with pytest.raises(ValueError):
            await operations.add_hardware("rtx 3080", 1.0)
        with pytest.raises(ValueError):
            await operations.add_team("team a")
        return created, team

    created, team = _run_operations(tmp_path, stats_store, stats_source, scenario)
    assert (created.name, created.multiplier, created.display_name) == ("RX 7900", 1.25, "Radeon RX 7900")
    assert team.name == "Team C"
