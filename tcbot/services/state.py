"""
System and parsing state for the Team Competition.

The state manager is the only mutable value shared between scheduled stats passes,
admin commands and read commands. Each system state lists the operation types it
permits; commands check it before touching stats and are refused while a pass or
reset is in progress.
"""

import logging
import threading
from enum import Enum
from functools import wraps
from typing import FrozenSet

from tcbot.utils.exceptions import ServiceUnavailable

logger = logging.getLogger(__name__)


class OperationType(Enum):
    READ = "read"
    WRITE = "write"


class ParsingState(Enum):
    """Whether stats parsing (and so catalog-change reconciliation) is currently allowed."""
    DISABLED = "disabled"
    ENABLED = "enabled"


class SystemState(Enum):
    """Current system state and the operation types it allows."""
    STARTING = ("starting", frozenset())
    AVAILABLE = ("available", frozenset({OperationType.READ, OperationType.WRITE}))
    UPDATING_STATS = ("updating_stats", frozenset({OperationType.READ}))
    RESETTING_STATS = ("resetting_stats", frozenset())
    WRITE_EXECUTED = ("write_executed", frozenset({OperationType.READ, OperationType.WRITE}))

    def __init__(self, label: str, permitted_operations: FrozenSet[OperationType]):
        self.label = label
        self.permitted_operations = permitted_operations

    def is_read_blocked(self) -> bool:
        return OperationType.READ not in self.permitted_operations

    def is_write_blocked(self) -> bool:
        return OperationType.WRITE not in self.permitted_operations

    def allows(self, operation_type: OperationType) -> bool:
        return operation_type in self.permitted_operations


class StateManager:
    """
    Thread-safe holder for the current system and parsing state.

    Transitions are last-write-wins and are not validated: any state may move to any
    other state.
    """

    def __init__(self,
                 system_state: SystemState = SystemState.STARTING,
                 parsing_state: ParsingState = ParsingState.DISABLED):
        self._lock = threading.Lock()
        self._system_state = system_state
        self._parsing_state = parsing_state

    def current_system_state(self) -> SystemState:
        with self._lock:
            return self._system_state

    def current_parsing_state(self) -> ParsingState:
        with self._lock:
            return self._parsing_state

    def next_system_state(self, state: SystemState) -> None:
        with self._lock:
            previous = self._system_state
            self._system_state = state
        if previous != state:
            logger.info(f"Changing system state: {previous.name} -> {state.name}")

    def next_parsing_state(self, state: ParsingState) -> None:
        with self._lock:
            previous = self._parsing_state
            self._parsing_state = state
        if previous != state:
            logger.info(f"Changing parsing state: {previous.name} -> {state.name}")

    def is_parsing_enabled(self) -> bool:
        return self.current_parsing_state() == ParsingState.ENABLED

    def is_read_blocked(self) -> bool:
        return self.current_system_state().is_read_blocked()

    def is_write_blocked(self) -> bool:
        return self.current_system_state().is_write_blocked()

    def require(self, operation_type: OperationType) -> SystemState:
        """Return the current state if it allows the operation, otherwise raise ServiceUnavailable."""
        state = self.current_system_state()
        if not state.allows(operation_type):
            raise ServiceUnavailable(state, operation_type)
        return state


def state_required(operation_type: OperationType):
    """Decorator that refuses a cog command while the system state blocks the operation type."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, interaction, *args, **kwargs):
            try:
                self.state_manager.require(operation_type)
            except ServiceUnavailable as e:
                logger.info(f"Refusing /{func.__name__} for user {interaction.user.id}: {e}")
                await interaction.response.send_message(e.user_message, ephemeral=True)
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator
