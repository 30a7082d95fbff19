"""
过滤条件存储 - 按 "库名_表名" 保存每张表的行过滤条件
"""

from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError as ModelValidationError

from db_synker.models.filters import FilterPredicate
from db_synker.storage.document_store import DocumentStore
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)

FILTERS_KEY = "filters"


def filter_key(db_name: Optional[str], table_name: Optional[str]) -> str:
    """过滤条件的键，格式 "库名_表名"（去除首尾空白）"""
    return f"{(db_name or '').strip()}_{(table_name or '').strip()}"


class FilterStore:
    """
    过滤条件存储

    不存在的键表示不过滤。
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def _load(self) -> Dict[str, list]:
        raw = self.store.get(FILTERS_KEY, default={})
        return raw if isinstance(raw, dict) else {}

    def load_all(self) -> Dict[str, List[FilterPredicate]]:
        """全部过滤条件"""
        return {key: self._parse(key, value) for key, value in self._load().items()}

    def get_filters(self, db_name: str, table_name: str) -> List[FilterPredicate]:
        """读取某张表的过滤条件，不存在时返回空列表"""
        key = filter_key(db_name, table_name)
        return self._parse(key, self._load().get(key))

    def set_filters(
        self,
        db_name: str,
        table_name: str,
        filters: Sequence[FilterPredicate]
    ) -> List[FilterPredicate]:
        """
        保存某张表的过滤条件

        空列表会删除该表的条目；库名和表名都为空时不做任何操作。

        返回:
            保存后的过滤条件
        """
        key = filter_key(db_name, table_name)
        if key == "_":
            return []

        data = self._load()
        if filters:
            data[key] = [f.model_dump(mode="json") for f in filters]
        else:
            data.pop(key, None)
        self.store.put(FILTERS_KEY, data)

        logger.info("filters_saved", key=key, count=len(filters))
        return self.get_filters(db_name, table_name)

    @staticmethod
    def _parse(key: str, value: object) -> List[FilterPredicate]:
        if not isinstance(value, list):
            return []
        predicates: List[FilterPredicate] = []
        for item in value:
            try:
                predicates.append(FilterPredicate.model_validate(item))
            except ModelValidationError as e:
                logger.warning("filter_skipped", key=key, error=str(e))
        return predicates
