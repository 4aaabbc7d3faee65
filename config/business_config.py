"""
业务配置接口 - 支持可替换的业务配置

新门店可以实现自己的业务配置（服务目录、支出类别说明等），替换默认配置。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class BusinessConfig(ABC):
    """业务配置抽象基类"""

    @abstractmethod
    def get_app_name(self) -> str:
        """获取门店/应用名称"""
        pass

    @abstractmethod
    def get_default_services(self) -> List[Dict[str, Any]]:
        """获取系统默认服务目录（种子数据）"""
        pass


class CarWashConfig(BusinessConfig):
    """洗车店业务配置"""

    def get_app_name(self) -> str:
        return "Car Wash Manager"

    def get_default_services(self) -> List[Dict[str, Any]]:
        return [
            {"name": "Exterior Wash", "price": "50", "description": "Exterior hand wash"},
            {"name": "Interior Cleaning", "price": "70", "description": "Vacuum and interior wipe-down"},
            {"name": "Engine Wash", "price": "100", "description": "Engine bay cleaning"},
            {"name": "Polish & Wax", "price": "150", "description": "Paint polish and wax"},
            {"name": "Detailed Interior Cleaning", "price": "200", "description": "Full interior detailing"},
            {"name": "Ceramic Coating", "price": "1500", "description": "Protective ceramic paint coating"},
        ]


# 全局业务配置实例（可以在 app.py 中替换）
business_config: BusinessConfig = CarWashConfig()
