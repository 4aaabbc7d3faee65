"""ORM model behavior tests.

Tests for:
- Column defaults (Job amounts, payment method, status, timestamps)
- Enum persistence by value
- Unique constraints (Vehicle.plate, User.username, Setting.key)
- The shared cancelled-job predicate
"""
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from database.models import (
    Customer, Vehicle, Job, User, Setting, JobStatus, PaymentMethod,
    ExpenseCategory
)


class TestJobModel:
    """Test Job ORM model."""

    def test_job_defaults(self, temp_db, factory):
        vehicle = factory.vehicle()
        with temp_db.get_session() as session:
            job = Job(vehicle_id=vehicle.id, customer_id=vehicle.customer_id,
                      total_amount=Decimal("50.00"))
            session.add(job)
            session.commit()

            assert job.paid_amount == Decimal("0")
            assert job.payment_method is PaymentMethod.CASH
            assert job.status is JobStatus.PENDING
            assert job.created_at is not None

    def test_enums_stored_by_value(self, temp_db, factory):
        job = factory.job(status=JobStatus.IN_PROGRESS,
                          method=PaymentMethod.TRANSFER)
        with temp_db.get_session() as session:
            row = session.execute(
                text("SELECT status, payment_method FROM jobs WHERE id = :id"),
                {"id": job.id},
            ).one()
        assert tuple(row) == ("in_progress", "transfer")

    def test_money_keeps_two_decimals(self, factory):
        job = factory.job(total="100.50", paid="0.25")
        assert job.total_amount == Decimal("100.50")
        assert job.paid_amount == Decimal("0.25")


class TestConstraints:
    """Unique constraints."""

    def test_plate_unique(self, temp_db, factory):
        factory.vehicle(plate="ABC-123")
        customer = factory.customer("Bob")
        with pytest.raises(IntegrityError):
            temp_db.vehicles.create(Vehicle, plate="ABC-123", brand="Ford",
                                    customer_id=customer.id)

    def test_username_unique(self, temp_db):
        temp_db.users.create(User, username="sam", password="x.y",
                             full_name="Sam")
        with pytest.raises(IntegrityError):
            temp_db.users.create(User, username="sam", password="x.y",
                                 full_name="Sam 2")

    def test_setting_key_unique(self, temp_db):
        with temp_db.get_session() as session:
            session.add(Setting(key="k", value="1"))
            session.add(Setting(key="k", value="2"))
            with pytest.raises(IntegrityError):
                session.commit()

    def test_customer_email_optional(self, temp_db):
        customer = temp_db.customers.create(Customer, name="NoEmail")
        assert customer.email is None
        assert customer.phone is None


class TestEnums:
    """Closed enum types."""

    def test_only_cancelled_is_excluded_from_revenue(self):
        assert [s for s in JobStatus if not s.counts_as_revenue] == [
            JobStatus.CANCELLED
        ]

    def test_payment_method_order(self):
        assert [m.value for m in PaymentMethod] == ["cash", "card", "transfer"]

    def test_expense_categories(self):
        assert {c.value for c in ExpenseCategory} == {
            "materials", "rent", "water", "electricity", "staff", "other"
        }
