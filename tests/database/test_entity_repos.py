"""Entity repository tests.

Tests for all entity repositories:
- CustomerRepository: list_all, search, cascading delete
- VehicleRepository: get_by_customer, get_by_plate, cascading delete
- ServiceRepository: is_system, get_system_services, get_or_create, delete
- UserRepository: get_by_username, count_admins
- ExpenseRepository: get_by_category, get_by_date_range
"""
from datetime import date
from decimal import Decimal

from database.models import (
    Customer, Vehicle, Service, Job, JobService, User, Expense,
    ExpenseCategory
)


# ============================================================
# CustomerRepository Tests
# ============================================================
class TestCustomerRepository:
    """Tests for CustomerRepository."""

    def test_create_and_get(self, temp_db):
        customer = temp_db.customers.create(
            Customer, name="Alice", phone="555-0100", email="a@example.com"
        )
        fetched = temp_db.customers.get_by_id(Customer, customer.id)
        assert fetched.name == "Alice"
        assert fetched.phone == "555-0100"

    def test_get_missing_returns_none(self, temp_db):
        assert temp_db.customers.get_by_id(Customer, 99999) is None

    def test_partial_update_ignores_none(self, temp_db):
        customer = temp_db.customers.create(Customer, name="Alice",
                                            phone="111")
        updated = temp_db.customers.update_by_id(
            Customer, customer.id, name="Alicia", phone=None
        )
        assert updated.name == "Alicia"
        assert updated.phone == "111"

    def test_update_missing_returns_none(self, temp_db):
        assert temp_db.customers.update_by_id(Customer, 404, name="x") is None

    def test_search_by_name_phone_email(self, temp_db):
        temp_db.customers.create(Customer, name="Alice", phone="555-1")
        temp_db.customers.create(Customer, name="Bob",
                                 email="bob@wash.test")
        assert [c.name for c in temp_db.customers.search("Ali")] == ["Alice"]
        assert [c.name for c in temp_db.customers.search("555")] == ["Alice"]
        assert [c.name for c in temp_db.customers.search("wash")] == ["Bob"]
        assert temp_db.customers.search("nobody") == []

    def test_delete_cascades_vehicles_jobs_and_links(self, temp_db, factory):
        customer = factory.customer("Alice")
        vehicle = factory.vehicle(customer)
        job = factory.job(vehicle, service_ids=[1, 2])
        other = factory.job()  # belongs to another customer

        assert temp_db.customers.delete(customer.id) is True

        assert temp_db.customers.get_by_id(Customer, customer.id) is None
        assert temp_db.vehicles.get_by_id(Vehicle, vehicle.id) is None
        assert temp_db.jobs.get_by_id(Job, job.id) is None
        assert temp_db.jobs.get_services(job.id) == []
        assert temp_db.jobs.get_by_id(Job, other.id) is not None

    def test_delete_missing_returns_false(self, temp_db):
        assert temp_db.customers.delete(12345) is False


# ============================================================
# VehicleRepository Tests
# ============================================================
class TestVehicleRepository:
    """Tests for VehicleRepository."""

    def test_get_by_customer(self, factory, temp_db):
        alice = factory.customer("Alice")
        bob = factory.customer("Bob")
        factory.vehicle(alice)
        factory.vehicle(alice)
        factory.vehicle(bob)
        assert len(temp_db.vehicles.get_by_customer(alice.id)) == 2
        assert len(temp_db.vehicles.get_by_customer(bob.id)) == 1

    def test_get_by_plate_case_insensitive(self, factory, temp_db):
        vehicle = factory.vehicle(plate="AB-123-CD")
        assert temp_db.vehicles.get_by_plate("ab-123-cd").id == vehicle.id
        assert temp_db.vehicles.get_by_plate("ZZ-000") is None

    def test_delete_removes_its_jobs(self, factory, temp_db):
        vehicle = factory.vehicle()
        job = factory.job(vehicle, service_ids=[3])
        assert temp_db.vehicles.delete(vehicle.id) is True
        assert temp_db.jobs.get_by_id(Job, job.id) is None
        assert temp_db.jobs.get_all_links() == []
        # the owner is kept
        assert temp_db.customers.get_by_id(Customer, vehicle.customer_id)


# ============================================================
# ServiceRepository Tests
# ============================================================
class TestServiceRepository:
    """Tests for ServiceRepository."""

    def test_seeded_system_services(self, temp_db):
        services = temp_db.services.get_system_services()
        assert [s.id for s in services] == [1, 2, 3, 4, 5, 6]
        assert services[0].name == "Exterior Wash"
        assert services[0].price == Decimal("50.00")

    def test_is_system(self, temp_db):
        assert temp_db.services.is_system(1)
        assert temp_db.services.is_system(6)
        assert not temp_db.services.is_system(7)

    def test_get_or_create(self, temp_db):
        first = temp_db.services.get_or_create("Tyre Shine", "25.00")
        second = temp_db.services.get_or_create("Tyre Shine", "30.00")
        assert first.id == second.id
        assert first.id > 6

    def test_delete_removes_links(self, temp_db, factory):
        service = temp_db.services.create(Service, name="Extra",
                                          price=Decimal("5"))
        job = factory.job(service_ids=[service.id, 1])
        assert temp_db.services.delete(service.id) is True
        assert [s.id for s in temp_db.jobs.get_services(job.id)] == [1]


# ============================================================
# UserRepository Tests
# ============================================================
class TestUserRepository:
    """Tests for UserRepository."""

    def test_get_by_username_case_insensitive(self, temp_db):
        temp_db.users.create(User, username="Manager", password="h.s",
                             full_name="M")
        assert temp_db.users.get_by_username("manager") is not None
        assert temp_db.users.get_by_username("nobody") is None

    def test_count_admins(self, temp_db):
        temp_db.users.create(User, username="a1", password="h.s",
                             full_name="A1", is_admin=True)
        temp_db.users.create(User, username="u1", password="h.s",
                             full_name="U1")
        assert temp_db.users.count_admins() == 1


# ============================================================
# ExpenseRepository Tests
# ============================================================
class TestExpenseRepository:
    """Tests for ExpenseRepository."""

    def test_by_category(self, factory, temp_db):
        factory.expense("10", category=ExpenseCategory.WATER)
        factory.expense("20", category=ExpenseCategory.RENT)
        rows = temp_db.expenses.get_by_category(ExpenseCategory.WATER)
        assert [e.amount for e in rows] == [Decimal("10.00")]

    def test_date_range_is_inclusive(self, factory, temp_db):
        factory.expense("1", date(2024, 1, 1))
        factory.expense("2", date(2024, 1, 15))
        factory.expense("3", date(2024, 1, 31))
        factory.expense("4", date(2024, 2, 1))
        rows = temp_db.expenses.get_by_date_range(date(2024, 1, 1),
                                                  date(2024, 1, 31))
        assert [e.amount for e in rows] == [
            Decimal("1.00"), Decimal("2.00"), Decimal("3.00")
        ]

    def test_delete_by_id(self, factory, temp_db):
        expense = factory.expense()
        assert temp_db.expenses.delete_by_id(Expense, expense.id) is True
        assert temp_db.expenses.delete_by_id(Expense, expense.id) is False
