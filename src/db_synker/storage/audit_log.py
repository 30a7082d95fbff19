"""
同步审计日志 - 只追加、按时间倒序、有上限
"""

import uuid
from datetime import datetime, timezone
from typing import Any, List

from pydantic import ValidationError as ModelValidationError

from db_synker.models.sync_log import SyncLogEntry
from db_synker.storage.document_store import DocumentStore
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)

LOGS_KEY = "logs"
DEFAULT_MAX_ENTRIES = 500


class AuditLog:
    """
    同步审计日志

    手动同步与定时同步共用。append 内部没有 await，在单个事件循环中
    天然是原子的；每次追加后整体覆盖写入并截断到 max_entries 条。
    """

    def __init__(self, store: DocumentStore, max_entries: int = DEFAULT_MAX_ENTRIES):
        """
        参数:
            store: 文档存储
            max_entries: 最多保留的条目数
        """
        if max_entries < 1:
            raise ValueError("max_entries 必须大于 0")
        self.store = store
        self.max_entries = max_entries

    def _load_raw(self) -> List[Any]:
        raw = self.store.get(LOGS_KEY, default=[])
        if not isinstance(raw, list):
            logger.warning("audit_log_malformed", type=type(raw).__name__)
            return []
        return raw

    def load_all(self) -> List[SyncLogEntry]:
        """按时间倒序返回全部条目，无法解析的条目被跳过"""
        entries: List[SyncLogEntry] = []
        for item in self._load_raw():
            try:
                entries.append(SyncLogEntry.model_validate(item))
            except ModelValidationError as e:
                logger.warning("audit_log_entry_skipped", error=str(e))
        return entries

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        """
        追加条目

        分配 id 与 timestamp 后插入到最前面，并截断到 max_entries 条。

        返回:
            带 id 与 timestamp 的新条目
        """
        stored = entry.model_copy(update={
            "id": uuid.uuid4().hex,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        raw = self._load_raw()
        raw.insert(0, stored.model_dump(mode="json", by_alias=True, exclude_none=True))
        self.store.put(LOGS_KEY, raw[:self.max_entries])

        logger.debug(
            "audit_log_appended",
            db=stored.db_name,
            table=stored.table_name,
            status=stored.status.value,
        )
        return stored

    def clear(self) -> None:
        """清空日志"""
        self.store.delete(LOGS_KEY)
