"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.customers``、``db.jobs`` 等属性直接访问子仓库，
   返回 ORM 对象，适合统计、备份等需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_daily_jobs()``、``get_job_services()``），
   返回字典，适合 Web 层直接输出。
"""
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterator, Union
from datetime import date
from sqlalchemy.orm import Session
from loguru import logger

from config.business_config import business_config
from config.settings import settings
from .connection import DatabaseConnection
from .entity_repos import (
    CustomerRepository, VehicleRepository, ServiceRepository,
    UserRepository, ExpenseRepository
)
from .business_repos import JobRepository
from .system_repos import SettingRepository
from .models import Service
from .serializers import job_to_dict, service_to_dict


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        customers: 顾客仓库。
        vehicles: 车辆仓库。
        services: 服务目录仓库。
        users: 用户仓库。
        expenses: 支出仓库。
        jobs: 工单仓库（含工单服务关联）。
        settings: 系统设置仓库。

    Example::

        db = DatabaseManager("sqlite:///data/carwash.db")
        db.create_tables()
        db.seed_services()

        # 通过子仓库访问（返回 ORM 对象）
        customer = db.customers.create(Customer, name="张三")

        # 通过便捷方法访问（返回字典）
        jobs = db.get_daily_jobs("2024-01-28")
    """

    def __init__(self, database_url: Optional[str] = None,
                 system_service_max_id: Optional[int] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            system_service_max_id: 系统默认服务ID上限，默认取settings配置。
        """
        self.conn = DatabaseConnection(database_url)

        if system_service_max_id is None:
            system_service_max_id = settings.system_service_max_id

        # 实体仓库
        self.customers = CustomerRepository(self.conn)
        self.vehicles = VehicleRepository(self.conn)
        self.services = ServiceRepository(self.conn, system_service_max_id)
        self.users = UserRepository(self.conn)
        self.expenses = ExpenseRepository(self.conn)

        # 业务记录仓库
        self.jobs = JobRepository(self.conn)

        # 系统数据仓库
        self.settings = SettingRepository(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """在单个事务中执行多步操作，异常时整体回滚。

        Example::

            with db.transaction() as sess:
                db.customers.create(Customer, session=sess, name="A")
                db.jobs.create_job({...}, session=sess)
        """
        sess = self.conn.get_session()
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 种子数据
    # ================================================================

    def seed_services(self) -> int:
        """服务目录为空时写入系统默认服务。

        Returns:
            新写入的服务数量。
        """
        if self.services.count(Service) > 0:
            return 0

        defaults = business_config.get_default_services()
        with self.transaction() as sess:
            for item in defaults:
                self.services.get_or_create(
                    item["name"], item["price"], item.get("description"),
                    session=sess,
                )
        logger.info(f"Seeded {len(defaults)} default services")
        return len(defaults)

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_daily_jobs(self, target_date: Union[str, date]
                       ) -> List[Dict[str, Any]]:
        """获取指定日期创建的全部工单。

        Args:
            target_date: 日期，支持 ``YYYY-MM-DD`` 字符串或 date 对象。
        """
        if isinstance(target_date, str):
            target_date = date.fromisoformat(target_date)
        return [job_to_dict(j) for j in self.jobs.get_by_date(target_date)]

    def get_job_services(self, job_id: int) -> List[Dict[str, Any]]:
        """获取工单关联的服务字典列表。"""
        return [service_to_dict(s) for s in self.jobs.get_services(job_id)]
