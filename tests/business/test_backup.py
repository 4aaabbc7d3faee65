"""Backup/restore tests.

Tests for:
- snapshot envelope shape and validation
- round trip: export -> import into an empty store -> export
- transactional import (failure leaves prior state intact)
- system services and administrators survive an import
- backup files: naming, auto-backup toggle, pruning, listing
"""
import json
import os
import time
from datetime import date, datetime
from decimal import Decimal

import pytest

from business.auth import AuthGate
from business.backup import BackupService, validate_snapshot
from business.errors import SnapshotValidationError
from database import DatabaseManager
from database.models import Customer, Job, JobStatus, Service, Vehicle


def _totals(snapshot):
    return (
        sum(Decimal(j["totalAmount"]) for j in snapshot["jobs"]),
        sum(Decimal(e["amount"]) for e in snapshot["expenses"]),
    )


def _counts(snapshot):
    return {key: len(snapshot[key]) for key in (
        "customers", "vehicles", "services", "jobs", "jobServices",
        "users", "expenses",
    )}


@pytest.fixture
def populated(temp_db, factory, auth, admin):
    """A store with two customers, jobs, links, a custom service and users."""
    alice = factory.customer("Alice", phone="555-1")
    bob = factory.customer("Bob")
    car = factory.vehicle(alice, plate="ALC-1")
    van = factory.vehicle(bob, plate="BOB-1")
    custom = temp_db.services.create(Service, name="Headlight Restore",
                                     price=Decimal("45.00"))
    factory.job(car, total="100.50", paid="100.50",
                status=JobStatus.COMPLETED,
                created_at=datetime(2024, 1, 28, 9, 30),
                service_ids=[1, custom.id])
    factory.job(van, total="70.00", paid="20.00", service_ids=[2])
    factory.expense("130.25", date(2024, 1, 20))
    factory.expense("9.99", date(2024, 1, 21))
    auth.create_user("clerk", "secret", "Front Desk")
    return temp_db


class TestValidation:

    @pytest.mark.parametrize("envelope", [
        None,
        [],
        {"version": "1.0"},
        {"timestamp": "2024-01-28T00:00:00"},
        {"timestamp": "t", "version": "1.0", "jobs": {"not": "a list"}},
    ])
    def test_rejects_malformed_envelopes(self, envelope):
        with pytest.raises(SnapshotValidationError):
            validate_snapshot(envelope)

    def test_rejected_before_store_access(self, populated, backup_service):
        with pytest.raises(SnapshotValidationError):
            backup_service.import_snapshot({"customers": []})
        assert populated.customers.count(Customer) == 2


class TestExport:

    def test_envelope_shape(self, populated, backup_service):
        snapshot = backup_service.export_snapshot()
        assert snapshot["version"] == "1.0"
        assert datetime.fromisoformat(snapshot["timestamp"])
        assert _counts(snapshot) == {
            "customers": 2, "vehicles": 2, "services": 7, "jobs": 2,
            "jobServices": 3, "users": 2, "expenses": 2,
        }
        job = snapshot["jobs"][0]
        assert job["totalAmount"] == "100.50"
        assert job["status"] == "completed"
        assert job["createdAt"] == "2024-01-28T09:30:00"

    def test_users_include_password_hash(self, populated, backup_service):
        users = backup_service.export_snapshot()["users"]
        assert all("." in u["password"] for u in users)

    def test_snapshot_is_json_serializable(self, populated, backup_service):
        json.dumps(backup_service.export_snapshot())


class TestImport:

    def test_round_trip_preserves_counts_and_sums(self, populated,
                                                  backup_service, temp_db):
        original = backup_service.export_snapshot()

        assert backup_service.import_snapshot(original) is True
        restored = backup_service.export_snapshot()

        assert _counts(restored) == _counts(original)
        assert _totals(restored) == _totals(original)

    def test_round_trip_into_fresh_store(self, populated, backup_service,
                                         tmp_path):
        snapshot = backup_service.export_snapshot()
        fresh = DatabaseManager(
            database_url=f"sqlite:///{tmp_path / 'fresh.db'}",
            system_service_max_id=6,
        )
        try:
            fresh.create_tables()
            fresh.seed_services()
            AuthGate(fresh).create_user("admin", "other", "Admin",
                                        is_admin=True)
            target = BackupService(fresh, backup_dir=str(tmp_path / "fresh"),
                                   prefix="carwash")

            assert target.import_snapshot(snapshot) is True
            restored = target.export_snapshot()
        finally:
            fresh.close()

        assert _counts(restored) == _counts(snapshot)
        assert _totals(restored) == _totals(snapshot)
        assert sorted(u["username"] for u in restored["users"]) == [
            "admin", "clerk"
        ]

    def test_import_into_empty_store_remaps_ids(self, populated,
                                                backup_service, temp_db):
        snapshot = backup_service.export_snapshot()
        # shift every id so nothing lines up with fresh autoincrement values
        for row in snapshot["customers"]:
            row["id"] += 100
        for row in snapshot["vehicles"]:
            row["id"] += 100
            row["customerId"] += 100
        for row in snapshot["jobs"]:
            row["customerId"] += 100
            row["vehicleId"] += 100

        temp_db.customers.delete(1)
        temp_db.customers.delete(2)
        assert backup_service.import_snapshot(snapshot) is True

        jobs = temp_db.jobs.list_all()
        assert len(jobs) == 2
        for job in jobs:
            vehicle = temp_db.vehicles.get_by_id(Vehicle, job.vehicle_id)
            assert vehicle.customer_id == job.customer_id

    def test_links_follow_remapped_services(self, populated, backup_service,
                                            temp_db):
        snapshot = backup_service.export_snapshot()
        assert backup_service.import_snapshot(snapshot) is True
        names = sorted(
            s.name
            for job in temp_db.jobs.list_all()
            for s in temp_db.jobs.get_services(job.id)
        )
        assert names == ["Exterior Wash", "Headlight Restore",
                         "Interior Cleaning"]

    def test_system_services_and_admins_preserved(self, populated,
                                                  backup_service, temp_db):
        snapshot = backup_service.export_snapshot()
        snapshot["users"] = [
            {"id": 9, "username": "intruder", "password": "x.y",
             "fullName": "X", "isAdmin": True},
            {"id": 10, "username": "ADMIN", "password": "x.y",
             "fullName": "Clash", "isAdmin": False},
            {"id": 11, "username": "washer", "password": "x.y",
             "fullName": "Washer", "isAdmin": False},
        ]
        snapshot["services"].append(
            {"id": 50, "name": "exterior wash", "price": "1.00",
             "description": None}
        )
        assert backup_service.import_snapshot(snapshot) is True

        usernames = sorted(u.username for u in temp_db.users.list_all())
        assert usernames == ["admin", "washer"]
        admin = temp_db.users.get_by_username("admin")
        assert admin.is_admin is True

        services = temp_db.services.list_all()
        assert [s.id for s in services[:6]] == [1, 2, 3, 4, 5, 6]
        assert services[0].price == Decimal("50.00")
        assert [s.name for s in services[6:]] == ["Headlight Restore"]

    def test_failed_import_rolls_back(self, populated, backup_service,
                                      temp_db):
        snapshot = backup_service.export_snapshot()
        snapshot["jobs"].append({
            "id": 99, "vehicleId": 12345, "customerId": 1,
            "totalAmount": "5.00",
        })
        before = backup_service.export_snapshot()

        assert backup_service.import_snapshot(snapshot) is False

        after = backup_service.export_snapshot()
        assert _counts(after) == _counts(before)
        assert _totals(after) == _totals(before)
        assert temp_db.users.get_by_username("clerk") is not None

    def test_sessions_of_replaced_users_are_dropped(self, populated,
                                                    backup_service, auth):
        admin_token, _ = auth.login("admin", "admin123")
        clerk_token, _ = auth.login("clerk", "secret")
        snapshot = backup_service.export_snapshot()
        snapshot["users"] = [
            {"id": 42, "username": "stranger", "password": "x.y",
             "fullName": "Stranger", "isAdmin": False},
        ]

        assert backup_service.import_snapshot(snapshot) is True

        assert populated.users.get_by_username("stranger") is not None
        assert auth.current_user(clerk_token) is None
        assert auth.current_user(admin_token).username == "admin"

    def test_bad_enum_value_fails_cleanly(self, populated, backup_service,
                                          temp_db):
        snapshot = backup_service.export_snapshot()
        snapshot["jobs"][0]["status"] = "archived"
        assert backup_service.import_snapshot(snapshot) is False
        assert temp_db.jobs.count(Job) == 2


class TestBackupFiles:

    def test_manual_backup_file(self, populated, backup_service):
        entry = backup_service.create_manual_backup()
        assert entry["filename"].startswith("carwash_manual_backup_")
        assert entry["filename"].endswith(".json")
        stamp = entry["filename"][len("carwash_manual_backup_"):-len(".json")]
        assert ":" not in stamp and "." not in stamp
        with open(entry["path"], encoding="utf-8") as f:
            assert json.load(f)["version"] == "1.0"
        assert entry["size"] == os.path.getsize(entry["path"])

    def test_auto_backup_respects_setting(self, populated, backup_service):
        assert backup_service.run_auto_backup() is None
        assert backup_service.list_backups() == []

        backup_service.set_auto_backup_enabled(True)
        entry = backup_service.run_auto_backup()
        assert entry["filename"].startswith("carwash_backup_")
        assert backup_service.is_auto_backup_enabled() is True

    def test_prune_keeps_ten_newest_auto_backups(self, temp_db, tmp_path):
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        for day in range(1, 13):
            name = f"carwash_backup_2024-01-{day:02d}T00-00-00-000000.json"
            (backup_dir / name).write_text("{}")
        (backup_dir / "carwash_manual_backup_2023-01-01T00-00-00.json"
         ).write_text("{}")

        service = BackupService(temp_db, backup_dir=str(backup_dir),
                                prefix="carwash", keep=10)
        removed = service.prune_auto_backups()

        assert sorted(os.path.basename(p) for p in removed) == [
            "carwash_backup_2024-01-01T00-00-00-000000.json",
            "carwash_backup_2024-01-02T00-00-00-000000.json",
        ]
        remaining = os.listdir(backup_dir)
        assert len(remaining) == 11
        assert "carwash_manual_backup_2023-01-01T00-00-00.json" in remaining

    def test_list_backups_newest_first(self, temp_db, tmp_path):
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        older = backup_dir / "carwash_backup_a.json"
        newer = backup_dir / "carwash_manual_backup_b.json"
        older.write_text("{}")
        newer.write_text("{\"x\": 1}")
        os.utime(older, (time.time() - 100, time.time() - 100))
        (backup_dir / "notes.txt").write_text("ignored")

        service = BackupService(temp_db, backup_dir=str(backup_dir),
                                prefix="carwash")
        entries = service.list_backups()
        assert [e["filename"] for e in entries] == [
            "carwash_manual_backup_b.json", "carwash_backup_a.json"
        ]
        assert set(entries[0]) == {"filename", "path", "timestamp", "size"}

    def test_list_backups_missing_dir(self, temp_db, tmp_path):
        service = BackupService(temp_db, backup_dir=str(tmp_path / "none"))
        assert service.list_backups() == []
