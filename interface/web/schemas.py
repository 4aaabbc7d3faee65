"""HTTP 请求体模型（pydantic）。

请求 JSON 使用 camelCase 字段名，模型内部使用 snake_case，
``model_dump()`` 的结果可直接传给仓库方法。
"""
import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from database.models import PaymentMethod, JobStatus, ExpenseCategory


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def submitted(self) -> dict:
        """返回客户端实际提交的字段（snake_case）。"""
        return self.model_dump(exclude_unset=True)


# ==================== 认证 ====================

class LoginRequest(CamelModel):
    username: str
    password: str


class RegisterRequest(CamelModel):
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1, max_length=100)


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str = Field(min_length=1)


# ==================== 顾客 / 车辆 / 服务 ====================

class CustomerCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = None
    email: Optional[str] = None


class CustomerUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = None
    email: Optional[str] = None


class VehicleCreate(CamelModel):
    plate: str = Field(min_length=1, max_length=20)
    brand: str = Field(min_length=1, max_length=50)
    model: Optional[str] = None
    color: Optional[str] = None
    customer_id: int


class VehicleUpdate(CamelModel):
    plate: Optional[str] = Field(default=None, min_length=1, max_length=20)
    brand: Optional[str] = Field(default=None, min_length=1, max_length=50)
    model: Optional[str] = None
    color: Optional[str] = None
    customer_id: Optional[int] = None


class ServiceCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    description: Optional[str] = None


class ServiceUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10,
                                   decimal_places=2)
    description: Optional[str] = None


# ==================== 工单 ====================

class JobCreate(CamelModel):
    vehicle_id: int
    customer_id: int
    total_amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    paid_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10,
                               decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.CASH
    status: JobStatus = JobStatus.PENDING
    notes: Optional[str] = None
    service_ids: List[int] = Field(default_factory=list)


class JobUpdate(CamelModel):
    vehicle_id: Optional[int] = None
    customer_id: Optional[int] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10,
                                          decimal_places=2)
    paid_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10,
                                         decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    status: Optional[JobStatus] = None
    notes: Optional[str] = None


class JobServiceLink(CamelModel):
    service_id: int


# ==================== 用户 ====================

class UserCreate(CamelModel):
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1, max_length=100)
    is_admin: bool = False


class UserUpdate(CamelModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    password: Optional[str] = Field(default=None, min_length=1)
    is_admin: Optional[bool] = None


# ==================== 支出 ====================

class ExpenseCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    category: ExpenseCategory
    date: datetime.date
    notes: Optional[str] = None


class ExpenseUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10,
                                    decimal_places=2)
    category: Optional[ExpenseCategory] = None
    date: Optional[datetime.date] = None
    notes: Optional[str] = None


# ==================== 备份 ====================

class BackupSettings(CamelModel):
    auto_backup_enabled: bool
