"""用户接口模块 - 对外提供 HTTP JSON API

核心组件：
- WebServer: FastAPI 应用工厂 + uvicorn 生命周期管理

使用示例：
    ```python
    from interface import WebServer

    server = WebServer(db, auth, stats, backup, port=8080)
    await server.startup()
    ```
"""
from interface.web.server import WebServer

__all__ = ["WebServer"]
