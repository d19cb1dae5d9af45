"""
User Operations Module

Business logic for changes to Team Competition users and hardware. Each change is
written to the catalog, then routed to the stats calculator so the user's
contribution so far is carried across the change:

- Account name, secret key or hardware change: contribution moves into the offset
- Team change: contribution is retired under the old team
- Deactivation: contribution is retired under the current team
- Hardware multiplier change: every user on that hardware is reconciled
"""

from typing import Optional

from tcbot.data_models.competitors import Category, HardwareRef, Role, TeamRef, UserRef
from tcbot.data_models.stats import OffsetStats, TcStats
from tcbot.database.database import Database
from tcbot.services.state import OperationType, StateManager, SystemState
from tcbot.services.stats_calculator import TcStatsCalculator
from tcbot.utils.exceptions import NotFoundError
from tcbot.utils.logger import setup_logger

logger = setup_logger(__name__)

USER_UPDATE_FIELDS = frozenset({
    'account_name', 'display_name', 'secret_key', 'category', 'role', 'hardware_id', 'team_id', 'is_active'
})
HARDWARE_UPDATE_FIELDS = frozenset({'name', 'display_name', 'multiplier', 'average_score'})


def is_user_state_change(previous: UserRef, updated: UserRef) -> bool:
    """Whether the change alters how the user's stats are retrieved or multiplied."""
    return (
        previous.hardware.id != updated.hardware.id
        or previous.account_name.lower() != updated.account_name.lower()
        or previous.secret_key.lower() != updated.secret_key.lower()
    )


def is_team_change(previous: UserRef, updated: UserRef) -> bool:
    return previous.team.id != updated.team.id


def is_deactivation(previous: UserRef, changes: dict) -> bool:
    return previous.is_active and changes.get('is_active') is False


def is_hardware_state_change(previous: HardwareRef, updated: HardwareRef) -> bool:
    return previous.multiplier != updated.multiplier


class UserOperations:
    """
    Operations for creating and updating Team Competition users and hardware.

    All operations are writes, so they are refused while the system state blocks writes.
    """

    def __init__(self, database: Database, calculator: TcStatsCalculator, state_manager: StateManager):
        """Initialize with database, stats calculator and state manager"""
        self.db = database
        self.calculator = calculator
        self.state_manager = state_manager
        self.logger = logger

    async def create_user(self, account_name: str, display_name: str, secret_key: str,
                          category: Category, hardware_id: int, team_id: int,
                          role: Role = Role.MEMBER) -> UserRef:
        """Enrol a user and take their initial stats."""
        self.state_manager.require(OperationType.WRITE)

        user = await self.db.create_user(
            account_name=account_name,
            display_name=display_name,
            secret_key=secret_key,
            category=category,
            hardware_id=hardware_id,
            team_id=team_id,
            role=role,
        )
        await self.calculator.initialise_user(user)
        self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)

        self.logger.info(f"Created user {user!r}")
        return user

    async def apply_user_update(self, user_id: int, **changes) -> UserRef:
        """
        Update a user and reconcile their stats for the change.

        Deactivation retires the user's contribution under their current team, and
        reactivation takes a fresh baseline. Otherwise a team change takes precedence:
        it resets the user's baseline, which also covers any account or hardware change
        made at the same time.
        """
        self.state_manager.require(OperationType.WRITE)

        unknown_fields = set(changes) - USER_UPDATE_FIELDS
        if unknown_fields:
            raise ValueError(f"Cannot update user fields: {sorted(unknown_fields)}")

        previous = await self.db.get_user(user_id)
        if not previous:
            raise NotFoundError("User", user_id)

        if is_deactivation(previous, changes):
            self.logger.info(f"User {user_id} deactivated, retiring stats under team '{previous.team.name}'")
            await self.calculator.retire_user(previous)

        updated = await self.db.update_user(user_id, **changes)

        try:
            await self._reconcile_user_update(previous, updated)
        finally:
            self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)
        return updated

    async def _reconcile_user_update(self, previous: UserRef, updated: UserRef):
        user_id = updated.id
        if not updated.is_active:
            self.logger.debug(f"User {user_id} is inactive, no stats to reconcile")
        elif not previous.is_active:
            self.logger.info(f"User {user_id} reactivated on team '{updated.team.name}'")
            await self.calculator.initialise_user(updated)
        elif is_team_change(previous, updated):
            self.logger.info(f"User {user_id} changed team: '{previous.team.name}' -> '{updated.team.name}'")
            await self.calculator.reconcile_team_change(updated, previous.team, updated.team)
        elif is_user_state_change(previous, updated):
            self.logger.info(f"User {user_id} changed account, secret key or hardware")
            await self.calculator.reconcile_user_change(updated)
        else:
            self.logger.debug(f"User {user_id} updated with no stats-affecting change")

    async def apply_hardware_update(self, hardware_id: int, **changes) -> HardwareRef:
        """Update hardware, reconciling every user on it if the multiplier changed."""
        self.state_manager.require(OperationType.WRITE)

        unknown_fields = set(changes) - HARDWARE_UPDATE_FIELDS
        if unknown_fields:
            raise ValueError(f"Cannot update hardware fields: {sorted(unknown_fields)}")

        previous = await self.db.get_hardware(hardware_id)
        if not previous:
            raise NotFoundError("Hardware", hardware_id)

        updated = await self.db.update_hardware(hardware_id, **changes)

        if is_hardware_state_change(previous, updated):
            users = await self.db.get_users_with_hardware(hardware_id)
            self.logger.info(
                f"Hardware '{updated.name}' multiplier changed {previous.multiplier} -> {updated.multiplier}, "
                f"reconciling {len(users)} users"
            )
            for user in users:
                await self.calculator.reconcile_user_change(user)

        self.state_manager.next_system_state(SystemState.WRITE_EXECUTED)
        return updated

    async def set_user_offset(self, user_id: int, offset: OffsetStats) -> TcStats:
        """Apply an admin offset to a user and return their recalculated TC stats."""
        user = await self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return await self.calculator.set_manual_offset(user, offset)

    async def get_user_by_display_name(self, display_name: str) -> Optional[UserRef]:
        return await self.db.get_user_by_display_name(display_name)

    async def add_hardware(self, name: str, multiplier: float, display_name: Optional[str] = None) -> HardwareRef:
        self.state_manager.require(OperationType.WRITE)
        if await self.db.get_hardware_by_name(name):
            raise ValueError(f"Hardware '{name}' already exists")

        hardware = await self.db.create_hardware(name, multiplier=multiplier, display_name=display_name)
        self.logger.info(f"Created hardware '{hardware.name}' with multiplier {hardware.multiplier}")
        return hardware

    async def add_team(self, name: str, description: Optional[str] = None) -> TeamRef:
        self.state_manager.require(OperationType.WRITE)
        if await self.db.get_team_by_name(name):
            raise ValueError(f"Team '{name}' already exists")

        team = await self.db.create_team(name, description=description)
        self.logger.info(f"Created team '{team.name}'")
        return team
