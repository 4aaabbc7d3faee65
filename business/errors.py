"""业务异常定义。

Web 层按异常类型映射 HTTP 状态码：
- ValidationError / SnapshotValidationError → 400
- InvalidCredentialsError → 401
- PermissionDeniedError → 403
- NotFoundError → 404
"""
from typing import Any, List, Optional


class CarWashError(Exception):
    """业务异常基类"""


class ValidationError(CarWashError, ValueError):
    """输入格式错误（日期、金额、请求体等），在访问存储前抛出。"""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class SnapshotValidationError(ValidationError):
    """备份快照结构不合法"""


class NotFoundError(CarWashError):
    """按 ID 查找的记录不存在"""

    def __init__(self, entity: str, record_id: Any):
        super().__init__(f"{entity} {record_id} not found")
        self.entity = entity
        self.record_id = record_id


class InvalidCredentialsError(CarWashError):
    """用户名/密码错误，或会话无效"""


class PermissionDeniedError(CarWashError):
    """已登录但无权执行该操作"""
