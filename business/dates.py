"""日期参数解析工具（``YYYY-MM-DD``，服务器本地时间）。"""
import calendar
from datetime import date, datetime
from typing import Optional, Tuple

from .errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"


def parse_date(value: Optional[str], field: str = "date",
               default: Optional[date] = None) -> date:
    """解析 ``YYYY-MM-DD`` 日期字符串。

    Args:
        value: 日期字符串；为空时返回 default（未给出则为今天）。
        field: 参数名，用于错误提示。
        default: 缺省值。

    Raises:
        ValidationError: 字符串无法解析。
    """
    if value is None or value == "":
        return default if default is not None else date.today()
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid {field}: expected YYYY-MM-DD",
            errors=[{"field": field, "value": value}],
        )


def month_bounds(today: Optional[date] = None) -> Tuple[date, date]:
    """返回当月第一天与最后一天。"""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)
