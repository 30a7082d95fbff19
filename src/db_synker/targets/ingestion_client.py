"""
远端接入端点客户端 - HTTP POST 建表并写入一批行
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from db_synker.exceptions import TransportError
from db_synker.models.sync_config import IngestionConfig
from db_synker.models.table import TableSchema
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)


def build_payload(
    table_name: str,
    schema: TableSchema,
    rows: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """
    构建请求体

    结构:
        ```json
        {"table_name": "orders",
         "table_config": [{"name": "id", "type": "INT", "primaryKey": true,
                           "autoIncrement": true, "nullable": false}],
         "unique_keys": ["id"],
         "table_items": [{"id": 1}]}
        ```
    """
    return {
        "table_name": table_name,
        "table_config": schema.table_config(),
        "unique_keys": list(schema.unique_keys),
        "table_items": rows if rows is not None else [],
    }


class IngestionClient:
    """
    接入端点客户端

    单个 aiohttp 会话在首次请求时创建，close() 释放。
    不做重试：任何非 2xx 响应或网络错误都以 TransportError 抛出，
    由调用方决定如何处理。
    """

    def __init__(self, config: IngestionConfig):
        """
        参数:
            config: 接入端点配置
        """
        self.config = config
        self.url = config.url
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
                headers=self.config.headers,
            )
        return self._session

    async def sync_table(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        发送一批数据

        参数:
            payload: build_payload 生成的请求体

        返回:
            远端响应 {code, msg, table?, rows?}

        异常:
            TransportError: 非 2xx 响应（携带状态码与响应体）或网络失败
        """
        session = self._get_session()
        try:
            async with session.post(self.url, json=payload) as response:
                data = await self._read_json(response)
                if not 200 <= response.status < 300:
                    msg = data.get("msg") or data.get("message") or response.reason or ""
                    raise TransportError(
                        f"接入端点返回错误 ({response.status}): {msg}",
                        status=response.status,
                        body=data,
                    )
                logger.debug(
                    "ingestion_batch_sent",
                    table=payload.get("table_name"),
                    items=len(payload.get("table_items") or []),
                    status=response.status,
                    rows=data.get("rows"),
                )
                return data
        except aiohttp.ClientError as e:
            raise TransportError(f"接入端点请求失败: {type(e).__name__}: {e}")
        except asyncio.TimeoutError as e:
            raise TransportError(f"接入端点请求超时: {e}")

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        """尽力解析 JSON 响应体，失败时返回空字典"""
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    async def close(self) -> None:
        """关闭 HTTP 会话"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
