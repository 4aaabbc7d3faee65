"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（顾客、车辆、服务目录、用户、支出），
每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List, Any
from datetime import date
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    Customer, Vehicle, Service, Job, JobService, User, Expense,
    ExpenseCategory
)


def _delete_jobs(sess: Session, job_ids: List[int]) -> None:
    """删除工单及其服务关联（先删关联，再删工单）。"""
    if not job_ids:
        return
    sess.query(JobService).filter(
        JobService.job_id.in_(job_ids)
    ).delete(synchronize_session=False)
    sess.query(Job).filter(
        Job.id.in_(job_ids)
    ).delete(synchronize_session=False)


class CustomerRepository(BaseCRUD):
    """顾客 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def list_all(self, session: Optional[Session] = None) -> List[Customer]:
        """按创建时间倒序返回全部顾客。"""
        return self.get_all(
            Customer, order_by=Customer.created_at.desc(), session=session
        )

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Customer]:
        """按姓名、电话或邮箱模糊搜索顾客。"""
        def _query(sess):
            return sess.query(Customer).filter(
                or_(
                    Customer.name.contains(keyword),
                    Customer.phone.contains(keyword),
                    Customer.email.contains(keyword),
                )
            ).all()

        return self._run(_query, session)

    def delete(self, customer_id: int,
               session: Optional[Session] = None) -> bool:
        """删除顾客，并级联删除其工单（含服务关联）和车辆。

        Returns:
            顾客是否存在并已删除。
        """
        def _do(sess):
            if sess.get(Customer, customer_id) is None:
                return False
            vehicle_ids = [
                v_id for (v_id,) in sess.query(Vehicle.id).filter(
                    Vehicle.customer_id == customer_id
                )
            ]
            job_ids = [
                j_id for (j_id,) in sess.query(Job.id).filter(
                    or_(
                        Job.customer_id == customer_id,
                        Job.vehicle_id.in_(vehicle_ids),
                    )
                )
            ]
            _delete_jobs(sess, job_ids)
            sess.query(Vehicle).filter(
                Vehicle.customer_id == customer_id
            ).delete(synchronize_session=False)
            sess.query(Customer).filter(
                Customer.id == customer_id
            ).delete(synchronize_session=False)
            return True

        return self._run(_do, session, commit=True)


class VehicleRepository(BaseCRUD):
    """车辆 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def list_all(self, session: Optional[Session] = None) -> List[Vehicle]:
        return self.get_all(
            Vehicle, order_by=Vehicle.created_at.desc(), session=session
        )

    def get_by_customer(self, customer_id: int,
                        session: Optional[Session] = None) -> List[Vehicle]:
        """获取顾客名下的所有车辆。"""
        return self.get_all(
            Vehicle, filters={"customer_id": customer_id}, session=session
        )

    def get_by_plate(self, plate: str,
                     session: Optional[Session] = None) -> Optional[Vehicle]:
        """按车牌号查询（不区分大小写）。"""
        def _query(sess):
            return sess.query(Vehicle).filter(
                func.lower(Vehicle.plate) == plate.strip().lower()
            ).first()

        return self._run(_query, session)

    def delete(self, vehicle_id: int,
               session: Optional[Session] = None) -> bool:
        """删除车辆，并级联删除该车辆的工单（含服务关联）。"""
        def _do(sess):
            if sess.get(Vehicle, vehicle_id) is None:
                return False
            job_ids = [
                j_id for (j_id,) in sess.query(Job.id).filter(
                    Job.vehicle_id == vehicle_id
                )
            ]
            _delete_jobs(sess, job_ids)
            sess.query(Vehicle).filter(
                Vehicle.id == vehicle_id
            ).delete(synchronize_session=False)
            return True

        return self._run(_do, session, commit=True)


class ServiceRepository(BaseCRUD):
    """服务目录 仓库。

    ID 不超过 ``system_max_id`` 的服务为系统默认服务（种子数据）。
    """

    def __init__(self, conn: DatabaseConnection,
                 system_max_id: int = 6) -> None:
        super().__init__(conn)
        self.system_max_id = system_max_id

    def is_system(self, service_id: int) -> bool:
        """是否为系统默认服务。"""
        return 0 < service_id <= self.system_max_id

    def list_all(self, session: Optional[Session] = None) -> List[Service]:
        return self.get_all(Service, order_by=Service.id, session=session)

    def get_system_services(self,
                            session: Optional[Session] = None
                            ) -> List[Service]:
        """获取系统默认服务列表。"""
        def _query(sess):
            return sess.query(Service).filter(
                Service.id <= self.system_max_id
            ).order_by(Service.id).all()

        return self._run(_query, session)

    def get_or_create(self, name: str, price: Any,
                      description: Optional[str] = None,
                      session: Optional[Session] = None) -> Service:
        """按名称获取或创建服务。"""
        def _do(sess):
            service = sess.query(Service).filter(
                Service.name == name
            ).first()
            if not service:
                service = Service(
                    name=name, price=price, description=description
                )
                sess.add(service)
                sess.flush()
                sess.refresh(service)
            return service

        return self._run(_do, session, commit=True)

    def delete(self, service_id: int,
               session: Optional[Session] = None) -> bool:
        """删除服务及其工单关联。"""
        def _do(sess):
            if sess.get(Service, service_id) is None:
                return False
            sess.query(JobService).filter(
                JobService.service_id == service_id
            ).delete(synchronize_session=False)
            sess.query(Service).filter(
                Service.id == service_id
            ).delete(synchronize_session=False)
            return True

        return self._run(_do, session, commit=True)


class UserRepository(BaseCRUD):
    """用户账号 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def list_all(self, session: Optional[Session] = None) -> List[User]:
        return self.get_all(User, order_by=User.id, session=session)

    def get_by_username(self, username: str,
                        session: Optional[Session] = None) -> Optional[User]:
        """按用户名查询（不区分大小写）。"""
        def _query(sess):
            return sess.query(User).filter(
                func.lower(User.username) == username.strip().lower()
            ).first()

        return self._run(_query, session)

    def count_admins(self, session: Optional[Session] = None) -> int:
        """统计管理员数量。"""
        return self.count(User, filters={"is_admin": True}, session=session)


class ExpenseRepository(BaseCRUD):
    """支出 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def list_all(self, session: Optional[Session] = None) -> List[Expense]:
        def _query(sess):
            return sess.query(Expense).order_by(
                Expense.date.desc(), Expense.id.desc()
            ).all()

        return self._run(_query, session)

    def get_by_category(self, category: ExpenseCategory,
                        session: Optional[Session] = None) -> List[Expense]:
        """按类别查询支出。"""
        return self.get_all(
            Expense, filters={"category": category},
            order_by=Expense.date.desc(), session=session
        )

    def get_by_date_range(self, start: date, end: date,
                          session: Optional[Session] = None
                          ) -> List[Expense]:
        """查询日期在 [start, end] 闭区间内的支出。"""
        def _query(sess):
            return sess.query(Expense).filter(
                Expense.date >= start,
                Expense.date <= end,
            ).order_by(Expense.date).all()

        return self._run(_query, session)
