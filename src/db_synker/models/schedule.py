"""
定时计划模型
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db_synker.models.table import TableRef, dedupe_tables


class ScheduleConfig(BaseModel):
    """
    持久化的定时同步计划（全局唯一）

    属性:
        schedule_expression: 五段式 CRON 表达式
        tables: 同步表列表（按 (db_name, table_name) 去重）
        paused: 是否暂停

    持久化格式（by_alias）:
        ```json
        {"cronExpression": "*/30 * * * *",
         "selectedTables": [{"dbName": "shop", "tableName": "orders"}],
         "paused": false}
        ```
    """
    model_config = ConfigDict(populate_by_name=True)

    schedule_expression: str = Field(..., min_length=1, alias="cronExpression", description="CRON 表达式")
    tables: List[TableRef] = Field(..., min_length=1, alias="selectedTables", description="同步表")
    paused: bool = Field(default=False, description="是否暂停")

    @field_validator("schedule_expression")
    @classmethod
    def strip_expression(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("CRON 表达式不能为空")
        return v

    @field_validator("tables")
    @classmethod
    def dedupe(cls, v: List[TableRef]) -> List[TableRef]:
        return dedupe_tables(v)
