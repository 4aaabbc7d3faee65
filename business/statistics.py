"""经营统计 - 日报、支付方式分布、净利润、热门服务、顾客分析。

统计器不直接访问全局数据库，而是注入工单仓库和支出仓库，
测试时可替换为内存实现。所有金额以 Decimal 求和，转为 JSON 数字
由 Web 层完成。已取消的工单统一通过 ``JobStatus.counts_as_revenue``
排除，不在各处单独判断。
"""
from decimal import Decimal
from datetime import date
from typing import Any, Dict, Iterable, List

from database.models import Job, JobStatus, PaymentMethod

ZERO = Decimal("0")


def counts_as_revenue(job: Job) -> bool:
    """工单是否计入统计（已取消的工单一律排除）。"""
    return JobStatus(job.status).counts_as_revenue


def _sum(values: Iterable[Any]) -> Decimal:
    return sum((Decimal(v) for v in values if v is not None), ZERO)


class StatisticsAggregator:
    """经营统计器。

    Args:
        jobs: 工单仓库，需提供 ``get_by_date``、``get_in_date_range``、
            ``list_all``、``get_by_customer``、``count_service_usage``。
        expenses: 支出仓库，需提供 ``get_by_date_range``。
    """

    def __init__(self, jobs, expenses):
        self.jobs = jobs
        self.expenses = expenses

    def daily_stats(self, target_date: date) -> Dict[str, Any]:
        """单日统计。

        统计 created_at 位于当日本地时间 [00:00, 次日00:00) 的未取消工单。
        ``pendingPayments`` 是应收与实收的差额（金额，不是工单数）。

        Returns:
            ``{totalAmount, totalPaid, totalJobs, pendingPayments}``，
            无工单时全部为 0。
        """
        jobs = [j for j in self.jobs.get_by_date(target_date)
                if counts_as_revenue(j)]
        total_amount = _sum(j.total_amount for j in jobs)
        total_paid = _sum(j.paid_amount for j in jobs)
        return {
            "totalAmount": total_amount,
            "totalPaid": total_paid,
            "totalJobs": len(jobs),
            "pendingPayments": total_amount - total_paid,
        }

    def payment_method_stats(self) -> List[Dict[str, Any]]:
        """按支付方式统计实收金额。

        只统计实收金额大于 0 的未取消工单，total 汇总 paid_amount。
        三种支付方式按枚举顺序固定输出，无工单的方式为 0。
        """
        buckets = {m: {"count": 0, "total": ZERO} for m in PaymentMethod}
        for job in self.jobs.list_all():
            if not counts_as_revenue(job):
                continue
            paid = Decimal(job.paid_amount or 0)
            if paid <= 0:
                continue
            bucket = buckets[PaymentMethod(job.payment_method)]
            bucket["count"] += 1
            bucket["total"] += paid

        return [
            {"method": method.value, "count": b["count"], "total": b["total"]}
            for method, b in buckets.items()
        ]

    def net_profit(self, start_date: date, end_date: date) -> Dict[str, Any]:
        """区间净利润，起止日期均为包含整天的闭区间。

        netProfit 可以为负数，不做截断。start_date 晚于 end_date 时区间为空。
        """
        jobs = self.jobs.get_in_date_range(start_date, end_date)
        revenue = _sum(j.total_amount for j in jobs if counts_as_revenue(j))
        expenses = _sum(
            e.amount for e in self.expenses.get_by_date_range(start_date, end_date)
        )
        return {
            "totalRevenue": revenue,
            "totalExpenses": expenses,
            "netProfit": revenue - expenses,
        }

    def popular_services(self) -> List[Dict[str, Any]]:
        """服务被工单选用的次数，按次数降序、同次数按名称升序。"""
        return [
            {"name": name, "count": count}
            for name, count in self.jobs.count_service_usage()
        ]

    def customer_analytics(self, customer_id: int) -> Dict[str, Any]:
        """单个顾客的消费汇总（排除已取消工单）。

        Returns:
            ``{totalJobs, totalAmount, completedJobs, pendingPayments}``。
        """
        jobs = [j for j in self.jobs.get_by_customer(customer_id)
                if counts_as_revenue(j)]
        total_amount = _sum(j.total_amount for j in jobs)
        total_paid = _sum(j.paid_amount for j in jobs)
        return {
            "totalJobs": len(jobs),
            "totalAmount": total_amount,
            "completedJobs": sum(
                1 for j in jobs if JobStatus(j.status) is JobStatus.COMPLETED
            ),
            "pendingPayments": total_amount - total_paid,
        }
