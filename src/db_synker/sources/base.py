"""
源数据提供者抽象基类
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from db_synker.models.filters import FilterPredicate
from db_synker.models.table import SourceTableSchema


class BaseSourceProvider(ABC):
    """
    源数据提供者抽象基类

    所有数据源（静态夹具、SQLite、MySQL）的基类，定义统一的读取接口。
    实现必须保证过滤语义一致：无论在 SQL 中过滤还是在内存中过滤，
    同一组条件得到相同的行集合。

    返回的行均已经过 utils.values.normalize_row 规整。
    """

    name: str = "base"

    @abstractmethod
    async def list_databases(self) -> List[str]:
        """列出可同步的数据库"""
        raise NotImplementedError

    @abstractmethod
    async def list_tables(self, db_name: str) -> List[str]:
        """列出数据库中的表"""
        raise NotImplementedError

    @abstractmethod
    async def database_exists(self, db_name: str) -> bool:
        """数据库是否存在"""
        raise NotImplementedError

    @abstractmethod
    async def table_exists(self, db_name: str, table_name: str) -> bool:
        """表是否存在于指定数据库"""
        raise NotImplementedError

    @abstractmethod
    async def get_table_schema(self, db_name: str, table_name: str) -> SourceTableSchema:
        """
        读取表结构

        返回:
            SourceTableSchema: 列元数据（按列顺序）与主键列名
        """
        raise NotImplementedError

    @abstractmethod
    async def get_table_data(
        self,
        db_name: str,
        table_name: str,
        filters: Optional[Sequence[FilterPredicate]] = None
    ) -> List[Dict[str, Any]]:
        """
        读取表数据

        参数:
            db_name: 数据库名
            table_name: 表名
            filters: 行过滤条件（取交集），None 或空表示全部
        """
        raise NotImplementedError

    @abstractmethod
    async def get_table_preview(
        self,
        db_name: str,
        table_name: str,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """读取前 limit 行用于预览"""
        raise NotImplementedError

    def session(self) -> "BaseSourceProvider":
        """
        为一次同步打开独立的会话

        返回的提供者由调用方关闭，关闭时不影响本对象和其它会话，
        因此手动同步与定时同步可以同时进行。没有连接状态的实现直接返回自身。
        """
        return self

    async def close(self) -> None:
        """释放连接 / 会话；可重复调用"""
        return None

    async def __aenter__(self) -> "BaseSourceProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
