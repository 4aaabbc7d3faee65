"""Shared fixtures for the car wash test suite.

Every test gets a fresh temp-file SQLite DatabaseManager with the default
service catalogue seeded, plus a small factory for inserting records.
"""
import os
import shutil
import tempfile
from datetime import datetime, date, timedelta
from decimal import Decimal

import pytest

from database import DatabaseManager
from database.models import (
    Customer, Vehicle, Expense, ExpenseCategory, JobStatus, PaymentMethod
)
from business.auth import AuthGate, SessionStore
from business.backup import BackupService
from business.statistics import StatisticsAggregator


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="carwash-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}",
                              system_service_max_id=6)
    manager.create_tables()
    manager.seed_services()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sample_date():
    """Stable date value for deterministic tests."""
    return date(2024, 1, 28)


class RecordFactory:
    """Helpers that insert domain rows with sensible defaults."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self._plates = 0

    def customer(self, name="Alice", **fields):
        return self.db.customers.create(Customer, name=name, **fields)

    def vehicle(self, customer=None, plate=None, **fields):
        customer = customer or self.customer()
        if plate is None:
            self._plates += 1
            plate = f"TEST-{self._plates:03d}"
        fields.setdefault("brand", "Toyota")
        return self.db.vehicles.create(
            Vehicle, plate=plate, customer_id=customer.id, **fields
        )

    def job(self, vehicle=None, total="100.00", paid="0", *,
            status=JobStatus.PENDING, method=PaymentMethod.CASH,
            created_at=None, service_ids=None):
        vehicle = vehicle or self.vehicle()
        data = {
            "vehicle_id": vehicle.id,
            "customer_id": vehicle.customer_id,
            "total_amount": Decimal(total),
            "paid_amount": Decimal(paid),
            "payment_method": method,
            "status": status,
            "created_at": created_at,
        }
        return self.db.jobs.create_job(data, service_ids)

    def expense(self, amount="10.00", on=None, *,
                category=ExpenseCategory.MATERIALS, name="Soap"):
        return self.db.expenses.create(
            Expense, name=name, amount=Decimal(amount), category=category,
            date=on or date.today(),
        )


@pytest.fixture
def factory(temp_db):
    return RecordFactory(temp_db)


@pytest.fixture
def stats(temp_db):
    return StatisticsAggregator(temp_db.jobs, temp_db.expenses)


@pytest.fixture
def backup_service(temp_db, tmp_path):
    return BackupService(temp_db, backup_dir=str(tmp_path / "backups"),
                         prefix="carwash", keep=10)


@pytest.fixture
def auth(temp_db):
    return AuthGate(temp_db, SessionStore("test-secret", timedelta(days=30)))


@pytest.fixture
def admin(auth):
    """Default administrator account (password ``admin123``)."""
    return auth.create_user("admin", "admin123", "Administrator",
                            is_admin=True)


@pytest.fixture
def noon(sample_date):
    return datetime.combine(sample_date, datetime.min.time()).replace(hour=12)
