"""
静态夹具数据源 - 本地开发时替代真实数据库
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from db_synker.core.filter_evaluator import filter_rows, unknown_columns
from db_synker.exceptions import NotFoundError, PersistenceError
from db_synker.models.filters import FilterPredicate
from db_synker.models.table import SourceColumn, SourceTableSchema
from db_synker.sources.base import BaseSourceProvider
from db_synker.utils.logging import get_logger
from db_synker.utils.values import normalize_row

logger = get_logger(__name__)


class FixtureSource(BaseSourceProvider):
    """
    从 YAML / JSON 夹具文件读取数据

    文件结构:
        ```yaml
        databases:
          shop:
            tables:
              orders:
                columns:
                  - {name: id, data_type: int, nullable: false, is_identity: true}
                  - {name: note, data_type: nvarchar, max_length: 200}
                primary_keys: [id]
                rows:
                  - {id: 1, note: "first"}
        ```

    文件在首次访问时加载并缓存。过滤在内存中完成。
    """

    name = "fixture"

    def __init__(self, path: str | Path):
        """
        参数:
            path: 夹具文件路径（.yaml/.yml 按 YAML 解析，其余按 JSON）
        """
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data

        try:
            content = self.path.read_text(encoding="utf-8")
            if self.path.suffix.lower() in (".yaml", ".yml"):
                raw = yaml.safe_load(content)
            else:
                raw = json.loads(content)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise PersistenceError(f"读取夹具文件失败: {self.path}: {e}")

        databases = raw.get("databases") if isinstance(raw, dict) else None
        self._data = databases if isinstance(databases, dict) else {}
        logger.debug("fixture_loaded", path=str(self.path), databases=len(self._data))
        return self._data

    def _tables(self, db_name: str) -> Dict[str, Any]:
        db = self._load().get(db_name)
        if not isinstance(db, dict):
            return {}
        tables = db.get("tables")
        return tables if isinstance(tables, dict) else {}

    def _table(self, db_name: str, table_name: str) -> Dict[str, Any]:
        table = self._tables(db_name).get(table_name)
        if not isinstance(table, dict):
            raise NotFoundError(f'表 "{table_name}" 不存在于夹具数据库 "{db_name}"')
        return table

    async def list_databases(self) -> List[str]:
        return list(self._load().keys())

    async def list_tables(self, db_name: str) -> List[str]:
        return list(self._tables(db_name).keys())

    async def database_exists(self, db_name: str) -> bool:
        return db_name in self._load()

    async def table_exists(self, db_name: str, table_name: str) -> bool:
        return table_name in self._tables(db_name)

    async def get_table_schema(self, db_name: str, table_name: str) -> SourceTableSchema:
        table = self._table(db_name, table_name)
        columns = [SourceColumn(**c) for c in table.get("columns") or []]
        return SourceTableSchema(
            columns=columns,
            primary_keys=list(table.get("primary_keys") or [])
        )

    def _rows(self, db_name: str, table_name: str) -> List[Dict[str, Any]]:
        rows = self._table(db_name, table_name).get("rows") or []
        return [normalize_row(r) for r in rows if isinstance(r, dict)]

    async def get_table_data(
        self,
        db_name: str,
        table_name: str,
        filters: Optional[Sequence[FilterPredicate]] = None
    ) -> List[Dict[str, Any]]:
        columns = [c.name for c in (await self.get_table_schema(db_name, table_name)).columns]
        missing = unknown_columns(filters, columns)
        if missing:
            logger.warning("filter_unknown_columns", db=db_name, table=table_name, columns=missing)
            return []
        return filter_rows(self._rows(db_name, table_name), filters)

    async def get_table_preview(
        self,
        db_name: str,
        table_name: str,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        return self._rows(db_name, table_name)[:limit]
