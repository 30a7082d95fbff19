"""
文档持久化存储 - 以整文档为单位读写的键值存储

计划配置、审计日志、过滤条件都以 JSON 文档形式保存，
每次读取整个文档、每次写入覆盖整个文档，没有局部更新。
"""

import json
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from db_synker.exceptions import PersistenceError
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)


class DocumentStore(ABC):
    """
    文档存储抽象基类

    子类只需实现 read / put / delete。read 遇到损坏或不可读的文档时
    抛出 PersistenceError；get 会把它当作"文档不存在"处理并记录警告。
    """

    @abstractmethod
    def read(self, key: str) -> Optional[Any]:
        """
        读取文档

        返回:
            解析后的 JSON 值，不存在时返回 None

        异常:
            PersistenceError: 文档损坏或不可读
        """
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, document: Any) -> None:
        """覆盖写入整个文档"""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """删除文档（不存在时无操作）"""
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        """读取文档，不存在或损坏时返回 default"""
        try:
            document = self.read(key)
        except PersistenceError as e:
            logger.warning("document_unreadable", key=key, error=str(e))
            return default
        return default if document is None else document

    def close(self) -> None:
        """释放资源"""
        return None


class JsonFileDocumentStore(DocumentStore):
    """
    JSON 文件存储

    目录下每个文档对应一个 <key>.json 文件。写入时先写临时文件再
    原子替换，避免进程中断留下半个文件。
    """

    def __init__(self, directory: Union[str, Path] = "data"):
        """
        参数:
            directory: 存储目录，不存在时自动创建
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"非法的文档键: {key!r}")
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"读取 {path} 失败: {e}")

    def put(self, key: str, document: Any) -> None:
        path = self._path(key)
        content = json.dumps(document, ensure_ascii=False, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


class SQLiteDocumentStore(DocumentStore):
    """
    SQLite 文档存储

    所有文档存放在单个 SQLite 文件的 documents 表中，
    每次操作打开新连接，不跨调用持有句柄。
    """

    def __init__(self, db_path: Union[str, Path] = "synker.db"):
        """
        参数:
            db_path: 存储数据库路径，默认 synker.db
        """
        self.db_path = Path(db_path)
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """获取数据库连接"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        """确保表结构存在"""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    def read(self, key: str) -> Optional[Any]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT body FROM documents WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"读取文档 {key} 失败: {e}")

        if row is None:
            return None
        try:
            return json.loads(row["body"])
        except ValueError as e:
            raise PersistenceError(f"文档 {key} 不是合法 JSON: {e}")

    def put(self, key: str, document: Any) -> None:
        body = json.dumps(document, ensure_ascii=False)
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO documents (key, body, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    body = excluded.body,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, body))

    def delete(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM documents WHERE key = ?", (key,))
