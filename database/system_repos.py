"""系统数据仓库 —— 系统级键值设置的数据访问层。"""
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Setting


class SettingRepository(BaseCRUD):
    """系统设置 仓库。

    进程级键值存储，用于功能开关（如自动备份）。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, key: str, default: Optional[str] = None,
            session: Optional[Session] = None) -> Optional[str]:
        """读取设置值，不存在返回 default。"""
        def _query(sess):
            row = sess.query(Setting).filter(Setting.key == key).first()
            return row.value if row else default

        return self._run(_query, session)

    def set(self, key: str, value: str,
            session: Optional[Session] = None) -> Setting:
        """写入设置值（幂等，已存在则更新）。"""
        def _do(sess):
            row = sess.query(Setting).filter(Setting.key == key).first()
            if row:
                row.value = value
                row.updated_at = datetime.now()
            else:
                row = Setting(key=key, value=value)
                sess.add(row)
            sess.flush()
            sess.refresh(row)
            return row

        return self._run(_do, session, commit=True)

    def get_bool(self, key: str, session: Optional[Session] = None) -> bool:
        """读取布尔型设置（仅字符串 ``"true"`` 视为开启）。"""
        return self.get(key, session=session) == "true"

    def set_bool(self, key: str, enabled: bool,
                 session: Optional[Session] = None) -> Setting:
        return self.set(key, "true" if enabled else "false", session=session)
