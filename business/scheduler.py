"""定时任务调度器 - 通用的任务调度框架 + 每日自动备份任务"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Callable, Optional
from loguru import logger
from config.settings import settings
import asyncio

from .backup import BackupService

AUTO_BACKUP_JOB_ID = "auto_backup"


class Scheduler:
    """定时任务调度器

    通用的任务调度框架，不包含具体的业务逻辑
    业务逻辑通过回调函数注入，需在事件循环运行后调用 start()
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        """初始化调度器"""
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def add_daily_task(
        self,
        task_func: Callable,
        hour: int = 0,
        minute: int = 0,
        task_id: str = 'daily_task',
        task_name: str = '每日任务'
    ):
        """添加每日定时任务（服务器本地时间）

        Args:
            task_func: 任务函数（async 函数）
            hour: 小时 (0-23)
            minute: 分钟 (0-59)
            task_id: 任务ID
            task_name: 任务名称
        """
        self.scheduler.add_job(
            task_func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=task_id,
            name=task_name,
            replace_existing=True,
            # 错过的触发不补跑，等待下一次
            coalesce=True,
            misfire_grace_time=60,
        )
        logger.info(f"Added daily task '{task_name}' at {hour:02d}:{minute:02d}")

    def start(self):
        """启动调度器"""
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        """停止调度器（不等待正在执行的任务）"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def remove_job(self, job_id: str):
        """移除任务

        Args:
            job_id: 任务ID
        """
        if self.scheduler.get_job(job_id) is None:
            logger.warning(f"Job {job_id} not found")
            return
        self.scheduler.remove_job(job_id)
        logger.info(f"Job {job_id} removed")


def make_auto_backup_task(backup: BackupService) -> Callable:
    """生成自动备份任务。

    备份在线程池中执行，不阻塞事件循环；失败只记录日志，
    等下一次定时触发再尝试。
    """
    async def auto_backup_task():
        try:
            entry = await asyncio.to_thread(backup.run_auto_backup)
        except Exception as e:
            logger.error(f"Scheduled backup failed: {e}")
            return None
        if entry:
            logger.info(f"Scheduled backup completed: {entry['filename']}")
        return entry

    return auto_backup_task


def schedule_auto_backup(scheduler: Scheduler,
                         backup: BackupService) -> None:
    """注册每日自动备份任务（默认本地时间午夜）。"""
    scheduler.add_daily_task(
        make_auto_backup_task(backup),
        hour=settings.auto_backup_hour,
        minute=settings.auto_backup_minute,
        task_id=AUTO_BACKUP_JOB_ID,
        task_name='自动备份',
    )
