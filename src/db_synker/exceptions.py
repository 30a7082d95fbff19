"""
同步引擎异常类型
"""

from typing import Any, Dict, Optional


class SynkerError(Exception):
    """所有同步相关异常的基类"""
    pass


class ValidationError(SynkerError):
    """输入校验失败（空标识、非法 CRON 表达式等），在任何状态变更之前抛出"""
    pass


class NotFoundError(SynkerError):
    """数据库或表不存在"""
    pass


class SchemaError(SynkerError):
    """无法推导目标表结构（无列、无法确定唯一键）"""
    pass


class TransportError(SynkerError):
    """
    远端接入端点返回非成功状态或网络失败

    属性:
        status: HTTP 状态码（网络错误时为 None）
        body: 解析后的响应体（无法解析时为空字典）
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.status = status
        self.body = body or {}

    @property
    def remote_message(self) -> Optional[str]:
        """远端返回的结构化错误信息"""
        msg = self.body.get("msg") or self.body.get("message")
        return str(msg) if msg else None


class PersistenceError(SynkerError):
    """持久化文档损坏或不可读"""
    pass
