"""
Services package for the Team Competition bot.

Stats retrieval, calculation, system state and summary services.
"""

from .base import BaseService
from .state import OperationType, ParsingState, StateManager, SystemState

__all__ = ['BaseService', 'OperationType', 'ParsingState', 'StateManager', 'SystemState']
