"""ORM 对象序列化 - 转为对外的 camelCase 字典。

金额保持 Decimal，时间保持 datetime/date：
- Web 层由 FastAPI 的 jsonable_encoder 转为 JSON 数字和 ISO 字符串；
- 备份快照使用 ``snapshot=True``，金额写为十进制字符串、时间写为 ISO 字符串。

序列化函数只读取列属性，不访问关联关系（对象可能已脱离会话）。
"""
from typing import Any, Dict, Optional
from decimal import Decimal
from datetime import date, datetime

from .models import Customer, Vehicle, Service, Job, JobService, User, Expense


def _money(value: Optional[Decimal], snapshot: bool) -> Any:
    if value is None:
        return None
    return str(value) if snapshot else value


def _time(value: Optional[Any], snapshot: bool) -> Any:
    if value is None:
        return None
    if snapshot and isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _enum(value: Any) -> Any:
    return getattr(value, "value", value)


def customer_to_dict(c: Customer, snapshot: bool = False) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "email": c.email,
        "createdAt": _time(c.created_at, snapshot),
    }


def vehicle_to_dict(v: Vehicle, snapshot: bool = False) -> Dict[str, Any]:
    return {
        "id": v.id,
        "plate": v.plate,
        "brand": v.brand,
        "model": v.model,
        "color": v.color,
        "customerId": v.customer_id,
        "createdAt": _time(v.created_at, snapshot),
    }


def service_to_dict(s: Service, snapshot: bool = False) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "price": _money(s.price, snapshot),
        "description": s.description,
    }


def job_to_dict(j: Job, snapshot: bool = False) -> Dict[str, Any]:
    return {
        "id": j.id,
        "vehicleId": j.vehicle_id,
        "customerId": j.customer_id,
        "totalAmount": _money(j.total_amount, snapshot),
        "paidAmount": _money(j.paid_amount, snapshot),
        "paymentMethod": _enum(j.payment_method),
        "status": _enum(j.status),
        "notes": j.notes,
        "createdAt": _time(j.created_at, snapshot),
    }


def job_service_to_dict(link: JobService) -> Dict[str, Any]:
    return {"jobId": link.job_id, "serviceId": link.service_id}


def user_to_dict(u: User, include_password: bool = False) -> Dict[str, Any]:
    """用户字典。密码散列只在备份快照中导出。"""
    data = {
        "id": u.id,
        "username": u.username,
        "fullName": u.full_name,
        "isAdmin": bool(u.is_admin),
    }
    if include_password:
        data["password"] = u.password
    return data


def expense_to_dict(e: Expense, snapshot: bool = False) -> Dict[str, Any]:
    return {
        "id": e.id,
        "name": e.name,
        "amount": _money(e.amount, snapshot),
        "category": _enum(e.category),
        "date": _time(e.date, snapshot),
        "notes": e.notes,
        "createdAt": _time(e.created_at, snapshot),
    }
