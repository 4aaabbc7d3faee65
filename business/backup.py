"""备份与恢复 - 全库快照的导出、导入和备份文件管理。

快照格式::

    {
        "customers": [...], "vehicles": [...], "services": [...],
        "jobs": [...], "jobServices": [...], "users": [...],
        "expenses": [...],
        "timestamp": "2024-01-28T00:00:00.123456",
        "version": "1.0"
    }

导入在单个数据库事务中完成：任何一步失败都整体回滚，原有数据保持不变。
快照中的原始 ID 不会写入数据库，插入时建立 旧ID → 新ID 映射并改写外键。
导入与导出通过进程级锁串行执行。
"""
import json
import os
import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from config.settings import settings
from database.manager import DatabaseManager
from database.models import (
    Customer, Vehicle, Service, Job, JobService, User, Expense,
    PaymentMethod, JobStatus, ExpenseCategory
)
from database.serializers import (
    customer_to_dict, vehicle_to_dict, service_to_dict, job_to_dict,
    job_service_to_dict, user_to_dict, expense_to_dict
)
from .errors import SnapshotValidationError

SNAPSHOT_VERSION = "1.0"
AUTO_BACKUP_SETTING = "auto_backup_enabled"

ENTITY_KEYS = (
    "customers", "vehicles", "services", "jobs", "jobServices",
    "users", "expenses",
)

# 导入/导出共用，防止并发恢复或恢复期间导出
_snapshot_lock = threading.Lock()


def validate_snapshot(envelope: Any) -> None:
    """校验快照外层结构。

    Raises:
        SnapshotValidationError: 缺少 timestamp/version，或实体字段不是列表。
    """
    if not isinstance(envelope, dict):
        raise SnapshotValidationError("Invalid backup data format")

    errors = []
    for field in ("timestamp", "version"):
        if not envelope.get(field):
            errors.append({"field": field, "message": "required"})
    for key in ENTITY_KEYS:
        value = envelope.get(key)
        if value is not None and not isinstance(value, list):
            errors.append({"field": key, "message": "must be a list"})

    if errors:
        raise SnapshotValidationError("Invalid backup data format", errors)


def _parse_datetime(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        # 统一为服务器本地时间的 naive datetime
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_date(value: str) -> date:
    if "T" in value:
        return _parse_datetime(value).date()
    return date.fromisoformat(value)


def _money(value: Any) -> Decimal:
    return Decimal(str(value))


def _remap(mapping: Dict[Any, int], old_id: Any, entity: str) -> int:
    try:
        return mapping[old_id]
    except KeyError:
        raise SnapshotValidationError(
            f"Snapshot references unknown {entity} id {old_id}"
        )


class BackupService:
    """备份服务。

    Attributes:
        db: 数据库管理器。
        backup_dir: 备份文件目录。
        prefix: 备份文件名前缀。
        keep: 自动备份保留份数。
    """

    def __init__(self, db: DatabaseManager,
                 backup_dir: Optional[str] = None,
                 prefix: Optional[str] = None,
                 keep: Optional[int] = None) -> None:
        self.db = db
        self.backup_dir = backup_dir or settings.backup_dir
        self.prefix = prefix or settings.backup_prefix
        self.keep = keep if keep is not None else settings.backup_keep

    # ================================================================
    # 快照导出 / 导入
    # ================================================================

    def export_snapshot(self) -> Dict[str, Any]:
        """导出全库快照（只读）。"""
        with _snapshot_lock:
            with self.db.get_session() as sess:
                return {
                    "customers": [
                        customer_to_dict(c, snapshot=True)
                        for c in sess.query(Customer).order_by(Customer.id)
                    ],
                    "vehicles": [
                        vehicle_to_dict(v, snapshot=True)
                        for v in sess.query(Vehicle).order_by(Vehicle.id)
                    ],
                    "services": [
                        service_to_dict(s, snapshot=True)
                        for s in sess.query(Service).order_by(Service.id)
                    ],
                    "jobs": [
                        job_to_dict(j, snapshot=True)
                        for j in sess.query(Job).order_by(Job.id)
                    ],
                    "jobServices": [
                        job_service_to_dict(link)
                        for link in self.db.jobs.get_all_links(session=sess)
                    ],
                    "users": [
                        user_to_dict(u, include_password=True)
                        for u in sess.query(User).order_by(User.id)
                    ],
                    "expenses": [
                        expense_to_dict(e, snapshot=True)
                        for e in sess.query(Expense).order_by(Expense.id)
                    ],
                    "timestamp": datetime.now().isoformat(),
                    "version": SNAPSHOT_VERSION,
                }

    def import_snapshot(self, envelope: Dict[str, Any]) -> bool:
        """从快照恢复全库数据。

        系统默认服务和管理员账号会被保留。

        Args:
            envelope: 快照字典。

        Returns:
            是否恢复成功。失败时事务已回滚，数据库保持导入前的状态。

        Raises:
            SnapshotValidationError: 快照外层结构不合法（不会访问数据库）。
        """
        validate_snapshot(envelope)

        with _snapshot_lock:
            try:
                with self.db.transaction() as sess:
                    counts = self._replace_all(sess, envelope)
            except Exception as e:
                logger.error(f"Backup import failed, rolled back: {e}")
                return False

        logger.info(f"Backup imported ({envelope['timestamp']}): {counts}")
        return True

    def _replace_all(self, sess, envelope: Dict[str, Any]) -> Dict[str, int]:
        system_max_id = self.db.services.system_max_id

        # 先删子表再删父表
        sess.query(JobService).delete(synchronize_session=False)
        sess.query(Job).delete(synchronize_session=False)
        sess.query(Vehicle).delete(synchronize_session=False)
        sess.query(Expense).delete(synchronize_session=False)
        sess.query(Customer).delete(synchronize_session=False)
        sess.query(Service).filter(
            Service.id > system_max_id
        ).delete(synchronize_session=False)
        sess.query(User).filter(
            User.is_admin.is_(False)
        ).delete(synchronize_session=False)
        sess.expunge_all()

        system_services = {
            s.name.strip().lower(): s.id
            for s in self.db.services.get_system_services(session=sess)
        }
        kept_usernames = {
            u.username.strip().lower() for u in sess.query(User)
        }

        customer_ids: Dict[Any, int] = {}
        for row in envelope.get("customers") or []:
            customer = Customer(
                name=row["name"],
                phone=row.get("phone"),
                email=row.get("email"),
                created_at=_parse_datetime(row.get("createdAt")),
            )
            sess.add(customer)
            sess.flush()
            customer_ids[row.get("id")] = customer.id

        vehicle_ids: Dict[Any, int] = {}
        for row in envelope.get("vehicles") or []:
            vehicle = Vehicle(
                plate=row["plate"],
                brand=row["brand"],
                model=row.get("model"),
                color=row.get("color"),
                customer_id=_remap(customer_ids, row.get("customerId"), "customer"),
                created_at=_parse_datetime(row.get("createdAt")),
            )
            sess.add(vehicle)
            sess.flush()
            vehicle_ids[row.get("id")] = vehicle.id

        service_ids: Dict[Any, int] = {}
        for row in envelope.get("services") or []:
            system_id = system_services.get(row["name"].strip().lower())
            if system_id is not None:
                service_ids[row.get("id")] = system_id
                continue
            service = Service(
                name=row["name"],
                price=_money(row["price"]),
                description=row.get("description"),
            )
            sess.add(service)
            sess.flush()
            service_ids[row.get("id")] = service.id

        job_ids: Dict[Any, int] = {}
        for row in envelope.get("jobs") or []:
            job = Job(
                vehicle_id=_remap(vehicle_ids, row.get("vehicleId"), "vehicle"),
                customer_id=_remap(customer_ids, row.get("customerId"), "customer"),
                total_amount=_money(row["totalAmount"]),
                paid_amount=_money(row.get("paidAmount") or 0),
                payment_method=PaymentMethod(
                    row.get("paymentMethod") or PaymentMethod.CASH.value
                ),
                status=JobStatus(row.get("status") or JobStatus.PENDING.value),
                notes=row.get("notes"),
                created_at=_parse_datetime(row.get("createdAt")),
            )
            sess.add(job)
            sess.flush()
            job_ids[row.get("id")] = job.id

        links = set()
        for row in envelope.get("jobServices") or []:
            links.add((
                _remap(job_ids, row.get("jobId"), "job"),
                _remap(service_ids, row.get("serviceId"), "service"),
            ))
        for job_id, service_id in sorted(links):
            sess.add(JobService(job_id=job_id, service_id=service_id))

        users = 0
        for row in envelope.get("users") or []:
            username = row["username"].strip()
            if row.get("isAdmin") or username.lower() in kept_usernames:
                continue
            sess.add(User(
                username=username,
                password=row["password"],
                full_name=row.get("fullName") or username,
                is_admin=False,
            ))
            kept_usernames.add(username.lower())
            users += 1

        expenses = 0
        for row in envelope.get("expenses") or []:
            sess.add(Expense(
                name=row["name"],
                amount=_money(row["amount"]),
                category=ExpenseCategory(row["category"]),
                date=_parse_date(row["date"]),
                notes=row.get("notes"),
                created_at=_parse_datetime(row.get("createdAt")),
            ))
            expenses += 1
        sess.flush()

        return {
            "customers": len(customer_ids),
            "vehicles": len(vehicle_ids),
            "services": len(service_ids),
            "jobs": len(job_ids),
            "jobServices": len(links),
            "users": users,
            "expenses": expenses,
        }

    # ================================================================
    # 备份文件
    # ================================================================

    def _write_backup(self, manual: bool) -> Dict[str, Any]:
        os.makedirs(self.backup_dir, exist_ok=True)
        snapshot = self.export_snapshot()
        stamp = snapshot["timestamp"].replace(":", "-").replace(".", "-")
        kind = "manual_backup" if manual else "backup"
        filename = f"{self.prefix}_{kind}_{stamp}.json"
        path = os.path.join(self.backup_dir, filename)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, ensure_ascii=False, indent=2)

        logger.info(f"Backup written: {path}")
        return self._describe(path)

    def create_manual_backup(self) -> Dict[str, Any]:
        """立即导出一份手动备份到备份目录。"""
        return self._write_backup(manual=True)

    def run_auto_backup(self) -> Optional[Dict[str, Any]]:
        """执行一次自动备份（仅当自动备份开关开启时）。

        成功后删除超出保留份数的旧自动备份，手动备份不受影响。

        Returns:
            新备份文件信息；开关关闭时返回 None。
        """
        if not self.is_auto_backup_enabled():
            logger.debug("Auto backup disabled, skipped")
            return None
        entry = self._write_backup(manual=False)
        self.prune_auto_backups()
        return entry

    def prune_auto_backups(self) -> List[str]:
        """删除最旧的自动备份，只保留最近 ``keep`` 份。

        Returns:
            被删除的文件路径列表。
        """
        auto_prefix = f"{self.prefix}_backup_"
        files = sorted(
            (name for name in self._backup_files()
             if name.startswith(auto_prefix)),
            reverse=True,
        )
        removed = []
        for name in files[self.keep:]:
            path = os.path.join(self.backup_dir, name)
            os.remove(path)
            removed.append(path)
        if removed:
            logger.info(f"Pruned {len(removed)} old automatic backups")
        return removed

    def list_backups(self) -> List[Dict[str, Any]]:
        """列出备份文件（自动和手动），按修改时间从新到旧。"""
        paths = [os.path.join(self.backup_dir, name)
                 for name in self._backup_files()]
        paths.sort(key=lambda p: (os.path.getmtime(p), os.path.basename(p)),
                   reverse=True)
        return [self._describe(p) for p in paths]

    def _backup_files(self) -> List[str]:
        if not os.path.isdir(self.backup_dir):
            return []
        return [
            name for name in os.listdir(self.backup_dir)
            if name.startswith(f"{self.prefix}_") and name.endswith(".json")
            and "backup_" in name
        ]

    @staticmethod
    def _describe(path: str) -> Dict[str, Any]:
        stat = os.stat(path)
        return {
            "filename": os.path.basename(path),
            "path": path,
            "timestamp": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "size": stat.st_size,
        }

    # ================================================================
    # 自动备份开关
    # ================================================================

    def is_auto_backup_enabled(self) -> bool:
        return self.db.settings.get_bool(AUTO_BACKUP_SETTING)

    def set_auto_backup_enabled(self, enabled: bool) -> bool:
        self.db.settings.set_bool(AUTO_BACKUP_SETTING, enabled)
        logger.info(f"Auto backup {'enabled' if enabled else 'disabled'}")
        return enabled
