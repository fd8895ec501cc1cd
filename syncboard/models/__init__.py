"""SQLAlchemy ORM models for SyncBoard."""

from syncboard.models.base import Base
from syncboard.models.board import BoardEdgeRow, BoardNodeRow, BoardRow
from syncboard.models.flow import FlowRow, OperationRow
from syncboard.models.profile import ProfileRow, SettingRow
from syncboard.models.schedule import HistoryRow, ScheduleRow

__all__ = [
    "Base",
    "BoardEdgeRow",
    "BoardNodeRow",
    "BoardRow",
    "FlowRow",
    "HistoryRow",
    "OperationRow",
    "ProfileRow",
    "ScheduleRow",
    "SettingRow",
]
