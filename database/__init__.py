"""数据库模块 —— 洗车店业务数据存储。"""
from .manager import DatabaseManager
from .connection import DatabaseConnection
from .models import (
    Base, Customer, Vehicle, Service, Job, JobService, User, Expense,
    Setting, PaymentMethod, JobStatus, ExpenseCategory
)

__all__ = [
    "DatabaseManager", "DatabaseConnection", "Base",
    "Customer", "Vehicle", "Service", "Job", "JobService", "User",
    "Expense", "Setting", "PaymentMethod", "JobStatus", "ExpenseCategory",
]
