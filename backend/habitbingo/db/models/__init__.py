"""ORM models exposed for metadata discovery."""
from habitbingo.db.models.app_profile import AppProfile
from habitbingo.db.models.board import BoardRecord
from habitbingo.db.models.event_log import EventLog
from habitbingo.db.models.habit_map import HabitMapRecord

__all__ = [
    "AppProfile",
    "BoardRecord",
    "EventLog",
    "HabitMapRecord",
]
