"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或手动创建 .env 文件 / 设置环境变量
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/carwash.db"

    # ========== Web 平台配置 ==========
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # ========== 认证 ==========
    admin_username: str = "admin"
    admin_password: str = "admin123"
    admin_full_name: str = "Administrator"
    session_secret: str = "change-me-to-a-random-secret-key"
    session_cookie: str = "carwash_session"
    session_days: int = 30
    cookie_secure: bool = False

    # ========== 备份 ==========
    backup_dir: str = "backups"
    backup_prefix: str = "carwash"
    backup_keep: int = 10
    auto_backup_hour: int = 0
    auto_backup_minute: int = 0

    # ========== 业务 ==========
    # 系统默认服务的 ID 上限（1..N 为种子数据，恢复备份时保留）
    system_service_max_id: int = 6

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
