"""登录认证 - 密码散列与服务端会话。

密码使用 scrypt（16 字节随机盐，64 字节输出）散列，存储格式为
``<hex散列>.<hex盐>``。会话保存在进程内存中，客户端只持有随机令牌
（通过 HttpOnly Cookie 下发），有效期默认 30 天。
"""
import hashlib
import hmac
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from loguru import logger

from config.settings import settings
from database.manager import DatabaseManager
from database.models import User
from .errors import (
    InvalidCredentialsError, NotFoundError, ValidationError
)

SALT_BYTES = 16
KEY_BYTES = 64


def hash_password(password: str) -> str:
    """生成 ``<hex散列>.<hex盐>`` 格式的密码散列。"""
    salt = secrets.token_bytes(SALT_BYTES)
    digest = hashlib.scrypt(
        password.encode("utf-8"), salt=salt, n=16384, r=8, p=1,
        dklen=KEY_BYTES
    )
    return f"{digest.hex()}.{salt.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """校验明文密码与存储的散列是否匹配（常量时间比较）。"""
    if not stored or "." not in stored:
        return False
    hashed, salt_hex = stored.split(".", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    if not salt or not expected:
        return False
    digest = hashlib.scrypt(
        password.encode("utf-8"), salt=salt, n=16384, r=8, p=1,
        dklen=len(expected)
    )
    return hmac.compare_digest(digest, expected)


def is_hashed(stored: str) -> bool:
    return "." in (stored or "")


@dataclass
class _Session:
    user_id: int
    username: Optional[str]
    expires_at: datetime


class SessionStore:
    """进程内会话存储。

    只保存令牌的 HMAC 摘要，内存中不留存原始令牌。
    """

    def __init__(self, secret: str, lifetime: timedelta) -> None:
        self._secret = secret.encode("utf-8")
        self.lifetime = lifetime
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def _key(self, token: str) -> str:
        return hmac.new(self._secret, token.encode("utf-8"),
                        hashlib.sha256).hexdigest()

    def create(self, user_id: int, username: Optional[str] = None) -> str:
        """创建会话。

        Args:
            user_id: 用户 ID。
            username: 登录时的用户名；ID 被其他账号复用时据此识别失效会话。
        """
        token = secrets.token_hex(32)
        with self._lock:
            self._sessions[self._key(token)] = _Session(
                user_id, username, datetime.now() + self.lifetime
            )
        return token

    def get(self, token: Optional[str]) -> Optional[_Session]:
        """返回未过期的会话，过期的会话在此清除。"""
        if not token:
            return None
        key = self._key(token)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            if datetime.now() > session.expires_at:
                del self._sessions[key]
                return None
            return session

    def get_user_id(self, token: Optional[str]) -> Optional[int]:
        session = self.get(token)
        return session.user_id if session else None

    def revoke(self, token: Optional[str]) -> None:
        if token:
            with self._lock:
                self._sessions.pop(self._key(token), None)

    def revoke_user(self, user_id: int) -> None:
        """注销某用户的全部会话（如账号被删除）。"""
        with self._lock:
            for key in [k for k, s in self._sessions.items()
                        if s.user_id == user_id]:
                del self._sessions[key]


class AuthGate:
    """认证入口。

    Attributes:
        db: 数据库管理器。
        sessions: 会话存储。
    """

    def __init__(self, db: DatabaseManager,
                 sessions: Optional[SessionStore] = None) -> None:
        self.db = db
        self.sessions = sessions or SessionStore(
            settings.session_secret, timedelta(days=settings.session_days)
        )

    def login(self, username: str, password: str) -> Tuple[str, User]:
        """校验用户名密码并创建会话。

        Returns:
            (会话令牌, 用户对象)。

        Raises:
            InvalidCredentialsError: 用户名或密码错误。
        """
        user = self.db.users.get_by_username(username or "")
        if user is None or not verify_password(password or "", user.password):
            logger.info(f"Failed login attempt for '{username}'")
            raise InvalidCredentialsError("Invalid username or password")
        token = self.sessions.create(user.id, user.username)
        logger.info(f"User '{user.username}' logged in")
        return token, user

    def logout(self, token: Optional[str]) -> None:
        self.sessions.revoke(token)

    def current_user(self, token: Optional[str]) -> Optional[User]:
        """返回会话对应的用户，无会话或已过期返回 None。

        账号已被删除，或其 ID 已被另一个用户名复用（如恢复备份后），
        会话随即作废。
        """
        session = self.sessions.get(token)
        if session is None:
            return None
        user = self.db.users.get_by_id(User, session.user_id)
        if user is None or (
            session.username is not None
            and user.username.lower() != session.username.lower()
        ):
            self.sessions.revoke(token)
            return None
        return user

    def register(self, username: str, password: str,
                 full_name: str) -> Tuple[str, User]:
        """注册普通用户并直接登录。

        Raises:
            ValidationError: 用户名已存在。
        """
        user = self.create_user(username, password, full_name, is_admin=False)
        return self.sessions.create(user.id, user.username), user

    def create_user(self, username: str, password: str, full_name: str,
                    is_admin: bool = False) -> User:
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required")
        if self.db.users.get_by_username(username) is not None:
            raise ValidationError("Username already exists")
        user = self.db.users.create(
            User, username=username, password=hash_password(password),
            full_name=full_name or username, is_admin=is_admin,
        )
        logger.info(f"User '{username}' created (admin={is_admin})")
        return user

    def change_password(self, token: Optional[str], current_password: str,
                        new_password: str) -> None:
        """修改当前登录用户的密码。

        Raises:
            InvalidCredentialsError: 未登录，或当前密码错误。
            ValidationError: 新密码为空。
        """
        user = self.current_user(token)
        if user is None:
            raise InvalidCredentialsError("Not authenticated")
        if not verify_password(current_password or "", user.password):
            raise InvalidCredentialsError("Current password is incorrect")
        if not new_password:
            raise ValidationError("New password is required")
        self.set_password(user.id, new_password)

    def set_password(self, user_id: int, new_password: str) -> User:
        user = self.db.users.update_by_id(
            User, user_id, password=hash_password(new_password)
        )
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def ensure_default_admin(self) -> Optional[User]:
        """用户表为空时创建默认管理员。"""
        if self.db.users.count(User) > 0:
            return None
        user = self.create_user(
            settings.admin_username, settings.admin_password,
            settings.admin_full_name, is_admin=True,
        )
        logger.warning(
            f"Default admin '{user.username}' created, change its password"
        )
        return user

    def hash_existing_passwords(self) -> int:
        """把历史遗留的明文密码改为散列存储。

        Returns:
            被改写的账号数量。
        """
        updated = 0
        for user in self.db.users.list_all():
            if not is_hashed(user.password):
                self.db.users.update_by_id(
                    User, user.id, password=hash_password(user.password)
                )
                updated += 1
        if updated:
            logger.info(f"Hashed {updated} plaintext passwords")
        return updated
