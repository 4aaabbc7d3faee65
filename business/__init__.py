"""业务层 - 统计、备份、认证与定时任务。"""
from .errors import (
    CarWashError, ValidationError, SnapshotValidationError, NotFoundError,
    InvalidCredentialsError, PermissionDeniedError
)
from .statistics import StatisticsAggregator
from .backup import BackupService
from .auth import AuthGate, SessionStore, hash_password, verify_password
from .scheduler import Scheduler, schedule_auto_backup

__all__ = [
    "CarWashError", "ValidationError", "SnapshotValidationError",
    "NotFoundError", "InvalidCredentialsError", "PermissionDeniedError",
    "StatisticsAggregator", "BackupService", "AuthGate", "SessionStore",
    "hash_password", "verify_password", "Scheduler", "schedule_auto_backup",
]
