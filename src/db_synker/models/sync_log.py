"""
同步日志模型 - 审计日志条目与单表同步结果
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncStatus(str, Enum):
    """同步结果状态"""
    SUCCESS = "success"
    ERROR = "error"


class SyncTrigger(str, Enum):
    """同步触发来源"""
    MANUAL = "manual"          # 手动（CLI / 接口）
    SCHEDULED = "scheduled"    # CRON 定时


class SyncLogEntry(BaseModel):
    """
    审计日志条目

    只追加、按时间倒序保存，超出上限时最旧的条目被丢弃。

    属性:
        id: 唯一标识（追加时分配）
        timestamp: UTC ISO-8601 时间（追加时分配）
        db_name: 源数据库名
        table_name: 表名
        status: success / error
        message: 结果描述或错误信息
        synced_count: 已同步行数（成功时有值）
        trigger: 触发来源

    持久化格式（by_alias）:
        ```json
        {"id": "9f1c...", "timestamp": "2024-01-05T10:00:00+00:00",
         "dbName": "shop", "tableName": "orders", "status": "success",
         "message": "表 \\"orders\\" 已同步 12 行", "synced": 12,
         "trigger": "scheduled"}
        ```
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, description="唯一标识")
    timestamp: Optional[str] = Field(default=None, description="UTC 时间戳")
    db_name: str = Field(..., alias="dbName", description="源数据库名")
    table_name: str = Field(..., alias="tableName", description="表名")
    status: SyncStatus = Field(..., description="同步结果")
    message: Optional[str] = Field(default=None, description="结果描述或错误信息")
    synced_count: Optional[int] = Field(default=None, alias="synced", ge=0, description="已同步行数")
    trigger: SyncTrigger = Field(default=SyncTrigger.MANUAL, description="触发来源")

    def is_success(self) -> bool:
        return self.status == SyncStatus.SUCCESS


class SyncResult(BaseModel):
    """
    单表同步结果

    失败时 synced_count 保留此前已被远端确认的行数。
    """
    success: bool = Field(..., description="是否成功")
    synced_count: int = Field(default=0, ge=0, description="已同步行数")
    batches: int = Field(default=0, ge=0, description="已成功发送的批次数")
    message: Optional[str] = Field(default=None, description="成功描述")
    error: Optional[str] = Field(default=None, description="失败描述")

    @model_validator(mode="after")
    def validate_error_present(self) -> "SyncResult":
        """失败结果必须携带错误描述"""
        if not self.success and not self.error:
            raise ValueError("失败的同步结果必须提供 error")
        return self

    def to_log_entry(
        self,
        db_name: str,
        table_name: str,
        trigger: SyncTrigger = SyncTrigger.MANUAL
    ) -> SyncLogEntry:
        """转换为审计日志条目"""
        if self.success:
            return SyncLogEntry(
                db_name=db_name,
                table_name=table_name,
                status=SyncStatus.SUCCESS,
                message=self.message,
                synced_count=self.synced_count,
                trigger=trigger
            )
        return SyncLogEntry(
            db_name=db_name,
            table_name=table_name,
            status=SyncStatus.ERROR,
            message=self.error,
            synced_count=self.synced_count or None,
            trigger=trigger
        )
