"""Web 接口 - FastAPI 管理后台"""
from interface.web.server import WebServer

__all__ = ["WebServer"]
