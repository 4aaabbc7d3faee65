"""SQLAlchemy ORM 模型定义。

本模块定义了洗车店业务的所有数据库表，包括：
- 顾客、车辆、服务目录等基础实体
- 工单（Job）及工单-服务关联（JobService）
- 用户账号、支出记录、系统设置

状态、支付方式、支出类别使用封闭的枚举类型，按值（字符串）持久化。
"""
import enum
from typing import Optional, List
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    Numeric, ForeignKey, Enum
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解（与 SQLAlchemy 2.0 兼容）
Base.__allow_unmapped__ = True


class PaymentMethod(str, enum.Enum):
    """支付方式"""
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


class JobStatus(str, enum.Enum):
    """工单状态"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def counts_as_revenue(self) -> bool:
        """该状态的工单是否计入营收与统计。

        所有统计口径共用此判断，已取消的工单一律排除。
        """
        return _REVENUE_STATUSES[self]


_REVENUE_STATUSES = {
    JobStatus.PENDING: True,
    JobStatus.IN_PROGRESS: True,
    JobStatus.COMPLETED: True,
    JobStatus.CANCELLED: False,
}


class ExpenseCategory(str, enum.Enum):
    """支出类别"""
    MATERIALS = "materials"
    RENT = "rent"
    WATER = "water"
    ELECTRICITY = "electricity"
    STAFF = "staff"
    OTHER = "other"


def _enum_column(enum_cls, **kwargs) -> Column:
    # 按枚举值存储为 VARCHAR，不依赖数据库原生 ENUM
    return Column(
        Enum(enum_cls, native_enum=False, length=20,
             values_callable=lambda members: [m.value for m in members]),
        **kwargs
    )


class Customer(Base):
    """顾客表模型。

    Attributes:
        id: 主键，自增整数。
        name: 顾客姓名，必填。
        phone: 联系电话，可选。
        email: 电子邮箱，可选。
        created_at: 创建时间（服务器本地时间）。

    Relationships:
        vehicles: 该顾客名下的车辆。
        jobs: 该顾客的工单。
    """
    __tablename__ = "customers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    phone: Optional[str] = Column(String(30))
    email: Optional[str] = Column(String(255))
    created_at: datetime = Column(DateTime, nullable=False, default=datetime.now)

    vehicles: List["Vehicle"] = relationship("Vehicle", back_populates="customer")
    jobs: List["Job"] = relationship("Job", back_populates="customer")


class Vehicle(Base):
    """车辆表模型。

    车牌号全局唯一，通过 customer_id 关联车主。
    """
    __tablename__ = "vehicles"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    plate: str = Column(String(20), nullable=False, unique=True, index=True)
    brand: str = Column(String(50), nullable=False)
    model: Optional[str] = Column(String(50))
    color: Optional[str] = Column(String(30))
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False)
    created_at: datetime = Column(DateTime, nullable=False, default=datetime.now)

    customer: "Customer" = relationship("Customer", back_populates="vehicles")
    jobs: List["Job"] = relationship("Job", back_populates="vehicle")


class Service(Base):
    """服务目录表模型。

    ID 位于系统保留区间（见 settings.system_service_max_id）的为系统默认服务。
    """
    __tablename__ = "services"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    price: Decimal = Column(Numeric(10, 2), nullable=False)
    description: Optional[str] = Column(Text)


class Job(Base):
    """工单表模型（核心业务表）。

    paid_amount 不应超过 total_amount，但该约束只在前端表单校验，存储层不强制。

    Attributes:
        id: 主键，自增整数。
        vehicle_id: 车辆ID。
        customer_id: 顾客ID。
        total_amount: 应收金额，Numeric(10,2)。
        paid_amount: 实收金额，Numeric(10,2)，默认0。
        payment_method: 支付方式（cash / card / transfer）。
        status: 工单状态（pending / in_progress / completed / cancelled）。
        notes: 备注，可选。
        created_at: 创建时间（服务器本地时间），按天统计以此为准。
    """
    __tablename__ = "jobs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id: int = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False)
    total_amount: Decimal = Column(Numeric(10, 2), nullable=False)
    paid_amount: Decimal = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    payment_method: PaymentMethod = _enum_column(
        PaymentMethod, nullable=False, default=PaymentMethod.CASH
    )
    status: JobStatus = _enum_column(
        JobStatus, nullable=False, default=JobStatus.PENDING
    )
    notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, nullable=False, default=datetime.now, index=True)

    customer: "Customer" = relationship("Customer", back_populates="jobs")
    vehicle: "Vehicle" = relationship("Vehicle", back_populates="jobs")


class JobService(Base):
    """工单-服务关联表（多对多），复合主键，无独立生命周期。"""
    __tablename__ = "job_services"

    job_id: int = Column(Integer, ForeignKey("jobs.id"), primary_key=True)
    service_id: int = Column(Integer, ForeignKey("services.id"), primary_key=True)


class User(Base):
    """用户账号表模型。

    password 字段保存 ``<hash>.<salt>`` 格式的散列值，从不明文存储。
    """
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    username: str = Column(String(50), nullable=False, unique=True)
    password: str = Column(String(255), nullable=False)
    full_name: str = Column(String(100), nullable=False)
    is_admin: bool = Column(Boolean, nullable=False, default=False)


class Expense(Base):
    """支出记录表模型。"""
    __tablename__ = "expenses"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    amount: Decimal = Column(Numeric(10, 2), nullable=False)
    category: ExpenseCategory = _enum_column(ExpenseCategory, nullable=False)
    date = Column(Date, nullable=False, index=True)
    notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, nullable=False, default=datetime.now)


class Setting(Base):
    """系统设置（键值对），如自动备份开关。"""
    __tablename__ = "settings"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    key: str = Column(String(100), nullable=False, unique=True)
    value: Optional[str] = Column(Text)
    updated_at: datetime = Column(DateTime, default=datetime.now, onupdate=datetime.now)
