#!/usr/bin/env python3
"""洗车店管理后台 - Web 应用入口

启动管理后台服务，提供：
1. 顾客、车辆、服务、工单、支出管理 API
2. 经营统计 API
3. 全库备份 / 恢复，以及每日自动备份

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/carwash.db

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL      数据库连接地址
    WEB_HOST          监听地址（默认 0.0.0.0）
    WEB_PORT          Web 端口（默认 8080）
    ADMIN_USERNAME    默认管理员用户名（默认 admin）
    ADMIN_PASSWORD    默认管理员密码（默认 admin123）
    SESSION_SECRET    会话密钥
    BACKUP_DIR        备份文件目录（默认 backups）
"""
import argparse
import asyncio
import signal

from loguru import logger


async def _cleanup(web, scheduler, db):
    """统一资源清理函数。

    确保调度器、Web 服务器和数据库连接被正确关闭，释放端口和文件句柄。
    """
    logger.info("正在清理资源...")

    # 1. 停止定时任务
    if scheduler is not None:
        try:
            scheduler.stop()
        except Exception as e:
            logger.warning(f"停止调度器时出错: {e}")

    # 2. 停止 Web 服务器（释放端口）
    if web is not None:
        try:
            await web.shutdown()
        except Exception as e:
            logger.warning(f"停止 Web 服务器时出错: {e}")

    # 3. 关闭数据库连接（释放连接池）
    if db is not None:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"关闭数据库连接时出错: {e}")

    logger.info("服务已停止")


async def main():
    from config.settings import settings

    parser = argparse.ArgumentParser(description="洗车店管理后台")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=None,
                        help="数据库连接 URL（默认读取 DATABASE_URL）")
    parser.add_argument("--no-scheduler", action="store_true",
                        help="不启动每日自动备份任务")
    args = parser.parse_args()

    # 用于 finally 清理的引用
    web = None
    scheduler = None
    db = None

    try:
        # 初始化数据库
        from database import DatabaseManager
        db = DatabaseManager(args.db)
        db.create_tables()
        db.seed_services()
        logger.info(f"数据库已连接: {db.database_url}")

        # 业务组件
        from business.auth import AuthGate
        from business.backup import BackupService
        from business.statistics import StatisticsAggregator

        auth = AuthGate(db)
        auth.ensure_default_admin()
        auth.hash_existing_passwords()
        stats = StatisticsAggregator(db.jobs, db.expenses)
        backup = BackupService(db)

        # 每日自动备份
        if not args.no_scheduler:
            from business.scheduler import Scheduler, schedule_auto_backup
            scheduler = Scheduler()
            schedule_auto_backup(scheduler, backup)
            scheduler.start()

        # 启动 Web 服务
        from interface.web.server import WebServer
        web = WebServer(db, auth, stats, backup,
                        host=args.host, port=args.port)
        await web.startup()

        print()
        print("=" * 60)
        print(f"  洗车店管理后台已启动!")
        print(f"  访问地址: http://localhost:{args.port}")
        print(f"  数据库: {db.database_url}")
        print(f"  备份目录: {backup.backup_dir}")
        print(f"  自动备份: {'已开启' if backup.is_auto_backup_enabled() else '未开启'}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        # 设置信号处理：使用 asyncio 的信号处理确保事件循环能正确响应
        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()
        _shutdown_requested = False

        def signal_handler(signum):
            """处理退出信号"""
            nonlocal _shutdown_requested
            if _shutdown_requested:
                # 第二次收到信号，强制退出
                logger.warning("再次收到退出信号，强制退出...")
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                return
            _shutdown_requested = True
            logger.info(f"收到信号 {signum}，正在关闭服务...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        # 保持运行，直到收到退出信号
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("任务被取消，正在清理...")
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
    finally:
        await _cleanup(web, scheduler, db)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        print("\n已停止。")
