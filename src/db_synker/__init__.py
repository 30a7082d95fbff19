"""
DB Synker 表同步引擎

将关系型数据库中选定的表按 CRON 计划（或手动触发）分批推送到
远端 HTTP 接入端点，附带行过滤、目标端建表结构推导与同步审计日志。
"""

from typing import Any

__version__ = "0.1.0"

# 延迟导入，避免循环依赖
__all__ = [
    "SyncEngine",
    "CronScheduler",
    "TableReplicator",
    "AppConfig",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """延迟加载核心类"""
    if name == "SyncEngine":
        from db_synker.core.engine import SyncEngine
        return SyncEngine
    elif name == "CronScheduler":
        from db_synker.core.scheduler import CronScheduler
        return CronScheduler
    elif name == "TableReplicator":
        from db_synker.core.replicator import TableReplicator
        return TableReplicator
    elif name == "AppConfig":
        from db_synker.models.sync_config import AppConfig
        return AppConfig
    elif name == "load_config":
        from db_synker.config import load_config
        return load_config
    raise AttributeError(f"module 'db_synker' has no attribute '{name}'")
