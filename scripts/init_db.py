"""初始化数据库：建表、写入默认服务目录和默认管理员"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from business.auth import AuthGate
from loguru import logger


def init_database(database_url=None):
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager(database_url)
    try:
        logger.info("Creating tables...")
        db.create_tables()

        logger.info("Inserting seed data...")
        db.seed_services()

        auth = AuthGate(db)
        admin = auth.ensure_default_admin()
        if admin is not None:
            logger.info(f"Created admin user: {admin.username}")
        auth.hash_existing_passwords()
    finally:
        db.close()

    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database(sys.argv[1] if len(sys.argv) > 1 else None)
