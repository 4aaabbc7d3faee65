"""通用 CRUD 基类。

所有仓库继承 BaseCRUD 获得通用的增删改查能力。每个方法都接受可选的
``session`` 参数：

- 传入外部会话时，只执行 flush，由调用方控制提交（便于组合成一个事务）；
- 不传时，方法自行创建会话并在结束时提交。
"""
from typing import Optional, List, Dict, Any, Callable, TypeVar
from sqlalchemy.orm import Session

from .connection import DatabaseConnection

T = TypeVar("T")


class BaseCRUD:
    """通用 CRUD 操作。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def _run(self, func: Callable[[Session], T],
             session: Optional[Session] = None,
             commit: bool = False) -> T:
        """在外部会话或新会话中执行 func。

        Args:
            func: 接收会话并返回结果的函数。
            session: 外部会话（可选）。
            commit: 自建会话时是否提交。
        """
        if session is not None:
            return func(session)

        with self._get_session() as sess:
            result = func(sess)
            if commit:
                sess.commit()
            return result

    def create(self, model_cls: type, session: Optional[Session] = None,
               **fields: Any):
        """创建一条记录并返回 ORM 对象。"""
        def _do(sess):
            obj = model_cls(**fields)
            sess.add(obj)
            sess.flush()
            sess.refresh(obj)
            return obj

        return self._run(_do, session, commit=True)

    def get_by_id(self, model: type, record_id: int,
                  session: Optional[Session] = None):
        """按主键查询，不存在返回 None。"""
        return self._run(lambda sess: sess.get(model, record_id), session)

    def get_all(self, model: type,
                filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[Any] = None,
                session: Optional[Session] = None) -> List[Any]:
        """查询全部记录（可按字段等值过滤、排序）。

        Args:
            model: ORM 模型类。
            filters: 字段名到值的等值过滤条件。
            order_by: 排序表达式（可选）。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by is not None:
                query = query.order_by(order_by)
            return query.all()

        return self._run(_query, session)

    def update_by_id(self, model_cls: type, record_id: int,
                     session: Optional[Session] = None,
                     **fields: Any):
        """部分更新：只写入值不为 None 的已知字段。

        Returns:
            更新后的 ORM 对象，记录不存在返回 None。
        """
        def _do(sess):
            obj = sess.get(model_cls, record_id)
            if obj is None:
                return None
            for key, value in fields.items():
                if value is not None and hasattr(obj, key):
                    setattr(obj, key, value)
            sess.flush()
            sess.refresh(obj)
            return obj

        return self._run(_do, session, commit=True)

    def delete_by_id(self, model: type, record_id: int,
                     session: Optional[Session] = None) -> bool:
        """硬删除，返回是否删除了记录。"""
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return False
            sess.delete(obj)
            sess.flush()
            return True

        return self._run(_do, session, commit=True)

    def count(self, model: type,
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计记录数。"""
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.count()

        return self._run(_query, session)
