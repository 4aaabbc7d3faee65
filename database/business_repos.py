"""业务记录仓库 —— 工单及工单服务关联的数据访问层。

工单是洗车店日常经营产生的核心交易数据。工单与服务目录之间通过
JobService 关联表实现多对多关系；删除工单时先删除其关联记录。
"""
from typing import Optional, List, Dict, Any, Iterable
from datetime import date, datetime, timedelta
from sqlalchemy import func
from sqlalchemy.orm import Session
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Job, JobService, Service


def day_bounds(target_date: date) -> tuple:
    """返回某天在服务器本地时间下的 [当日 00:00, 次日 00:00) 区间。"""
    start = datetime.combine(target_date, datetime.min.time())
    return start, start + timedelta(days=1)


class JobRepository(BaseCRUD):
    """工单 仓库。

    管理工单（洗车作业单）的增删改查，以及工单与服务目录的关联。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_job(self, job_data: Dict[str, Any],
                   service_ids: Optional[Iterable[int]] = None,
                   session: Optional[Session] = None) -> Job:
        """创建工单，并可同时关联服务。

        Args:
            job_data: 工单字段字典，支持以下键：
                - vehicle_id: 车辆ID（必填）
                - customer_id: 顾客ID（必填）
                - total_amount: 应收金额（必填）
                - paid_amount: 实收金额（可选，默认0）
                - payment_method: 支付方式（可选，默认cash）
                - status: 工单状态（可选，默认pending）
                - notes: 备注（可选）
                - created_at: 创建时间（可选，默认当前本地时间）
            service_ids: 关联的服务ID列表（可选，重复ID只关联一次）。

        Returns:
            新创建的 Job 对象。
        """
        fields = {k: v for k, v in job_data.items() if v is not None}

        def _do(sess):
            job = Job(**fields)
            sess.add(job)
            sess.flush()
            for service_id in dict.fromkeys(service_ids or []):
                sess.add(JobService(job_id=job.id, service_id=service_id))
            sess.flush()
            sess.refresh(job)
            return job

        job = self._run(_do, session, commit=True)
        logger.debug(f"Job {job.id} created")
        return job

    def list_all(self, session: Optional[Session] = None) -> List[Job]:
        return self.get_all(Job, order_by=Job.created_at.desc(),
                            session=session)

    def get_by_date(self, target_date: date,
                    session: Optional[Session] = None) -> List[Job]:
        """获取指定日期（本地时间整天）创建的工单。"""
        start, end = day_bounds(target_date)
        return self.get_created_between(start, end, session=session)

    def get_in_date_range(self, start_date: date, end_date: date,
                          session: Optional[Session] = None) -> List[Job]:
        """获取创建日期在 [start_date, end_date] 闭区间（整天）内的工单。"""
        start, _ = day_bounds(start_date)
        _, end = day_bounds(end_date)
        return self.get_created_between(start, end, session=session)

    def get_created_between(self, start: datetime, end: datetime,
                            session: Optional[Session] = None) -> List[Job]:
        """获取 created_at 位于 [start, end) 的工单。"""
        def _query(sess):
            return sess.query(Job).filter(
                Job.created_at >= start,
                Job.created_at < end,
            ).order_by(Job.created_at).all()

        return self._run(_query, session)

    def get_by_customer(self, customer_id: int,
                        session: Optional[Session] = None) -> List[Job]:
        """获取顾客的全部工单。"""
        return self.get_all(
            Job, filters={"customer_id": customer_id},
            order_by=Job.created_at.desc(), session=session
        )

    def delete(self, job_id: int,
               session: Optional[Session] = None) -> bool:
        """删除工单（先删除其服务关联）。"""
        def _do(sess):
            if sess.get(Job, job_id) is None:
                return False
            sess.query(JobService).filter(
                JobService.job_id == job_id
            ).delete(synchronize_session=False)
            sess.query(Job).filter(
                Job.id == job_id
            ).delete(synchronize_session=False)
            return True

        return self._run(_do, session, commit=True)

    # ---------------- 工单服务关联 ----------------

    def get_services(self, job_id: int,
                     session: Optional[Session] = None) -> List[Service]:
        """获取工单关联的服务列表。"""
        def _query(sess):
            return sess.query(Service).join(
                JobService, JobService.service_id == Service.id
            ).filter(JobService.job_id == job_id).order_by(Service.id).all()

        return self._run(_query, session)

    def add_service(self, job_id: int, service_id: int,
                    session: Optional[Session] = None) -> JobService:
        """为工单关联一项服务（已存在则直接返回）。"""
        def _do(sess):
            link = sess.get(JobService, (job_id, service_id))
            if link is None:
                link = JobService(job_id=job_id, service_id=service_id)
                sess.add(link)
                sess.flush()
            return link

        return self._run(_do, session, commit=True)

    def remove_service(self, job_id: int, service_id: int,
                       session: Optional[Session] = None) -> bool:
        """取消工单与服务的关联，返回关联是否存在。"""
        def _do(sess):
            link = sess.get(JobService, (job_id, service_id))
            if link is None:
                return False
            sess.delete(link)
            sess.flush()
            return True

        return self._run(_do, session, commit=True)

    def get_all_links(self,
                      session: Optional[Session] = None) -> List[JobService]:
        """获取全部工单服务关联记录（按工单、服务排序）。"""
        def _query(sess):
            return sess.query(JobService).order_by(
                JobService.job_id, JobService.service_id
            ).all()

        return self._run(_query, session)

    def count_service_usage(self,
                            session: Optional[Session] = None
                            ) -> List[tuple]:
        """统计每项服务被关联到工单的次数。

        Returns:
            ``(service_name, count)`` 元组列表，按次数降序、名称升序。
            从未被使用的服务不出现。
        """
        def _query(sess):
            usage = func.count(JobService.job_id).label("usage")
            return sess.query(Service.name, usage).join(
                JobService, JobService.service_id == Service.id
            ).group_by(Service.id, Service.name).order_by(
                usage.desc(), Service.name
            ).all()

        return [(name, count) for name, count in self._run(_query, session)]
