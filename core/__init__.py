"""Framework-agnostic core — logging, identity resolution, FSM storage, state groups.

This package must NEVER import from ``dispatch/`` or ``sdk/``.
"""

from core.fsm import FSMData, FSMStorage, MemoryFSMStorage
from core.identity import ParsedCommand, parse_command, update_kind
from core.logger import MaxbotLogger
from core.redis_storage import RedisFSMStorage
from core.states import StateGroup

__all__ = [
    "FSMData",
    "FSMStorage",
    "MemoryFSMStorage",
    "RedisFSMStorage",
    "ParsedCommand",
    "parse_command",
    "update_kind",
    "MaxbotLogger",
    "StateGroup",
]
