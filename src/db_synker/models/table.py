"""
表结构模型 - 源端列元数据与目标端建表结构
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TableRef(BaseModel):
    """
    同步单元标识

    属性:
        db_name: 源数据库名
        table_name: 表名

    唯一键为去除首尾空白后的 (db_name, table_name)。
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    db_name: str = Field(..., alias="dbName", description="源数据库名")
    table_name: str = Field(..., alias="tableName", description="表名")

    @field_validator("db_name", "table_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("库名和表名不能为空")
        return v

    @property
    def key(self) -> Tuple[str, str]:
        """唯一键"""
        return (self.db_name, self.table_name)

    def __str__(self) -> str:
        return f"{self.db_name}.{self.table_name}"


def dedupe_tables(tables: List[TableRef]) -> List[TableRef]:
    """按唯一键去重，保留首次出现的顺序"""
    seen = set()
    result: List[TableRef] = []
    for table in tables:
        if table.key in seen:
            continue
        seen.add(table.key)
        result.append(table)
    return result


class SourceColumn(BaseModel):
    """
    源端列元数据

    属性:
        name: 列名
        data_type: 源端声明类型（如 nvarchar、int、datetime2）
        max_length: 字符长度，-1 表示 max（无上限）
        precision: 数值精度
        scale: 数值小数位
        nullable: 是否可空
        is_identity: 是否为自增（identity）列
    """
    name: str = Field(..., min_length=1, description="列名")
    data_type: str = Field(default="", description="源端声明类型")
    max_length: Optional[int] = Field(default=None, description="字符长度，-1 表示无上限")
    precision: Optional[int] = Field(default=None, description="数值精度")
    scale: Optional[int] = Field(default=None, description="数值小数位")
    nullable: bool = Field(default=True, description="是否可空")
    is_identity: bool = Field(default=False, description="是否为自增列")


class SourceTableSchema(BaseModel):
    """源端表结构：列元数据 + 主键列名（按声明顺序）"""
    columns: List[SourceColumn] = Field(default_factory=list, description="列元数据")
    primary_keys: List[str] = Field(default_factory=list, description="主键列名")


class ColumnDefinition(BaseModel):
    """
    目标端列定义

    序列化（by_alias）后即接入端点 table_config 数组的元素:
        {"name", "type", "primaryKey", "autoIncrement", "nullable"}
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="列名")
    type: str = Field(..., description="目标端类型，如 VARCHAR(50)、TEXT、INT")
    is_key: bool = Field(default=False, alias="primaryKey", description="是否主键列")
    auto_increment: bool = Field(default=False, alias="autoIncrement", description="是否自增")
    nullable: bool = Field(default=True, description="是否可空")

    @model_validator(mode="after")
    def validate_auto_increment(self) -> "ColumnDefinition":
        """自增列必须同时是主键列"""
        if self.auto_increment and not self.is_key:
            raise ValueError(f"自增列 {self.name} 必须是主键列")
        return self


class TableSchema(BaseModel):
    """
    目标端表结构

    属性:
        columns: 列定义
        unique_keys: 目标端用于 upsert 冲突判定的列，非空
    """
    columns: List[ColumnDefinition] = Field(..., min_length=1, description="列定义")
    unique_keys: List[str] = Field(..., min_length=1, description="唯一键列名")

    @model_validator(mode="after")
    def validate_single_auto_increment(self) -> "TableSchema":
        """至多一个自增列"""
        auto_columns = [c.name for c in self.columns if c.auto_increment]
        if len(auto_columns) > 1:
            raise ValueError(f"至多允许一个自增列，实际为: {auto_columns}")
        return self

    def table_config(self) -> List[dict]:
        """接入端点所需的 table_config 数组"""
        return [c.model_dump(by_alias=True) for c in self.columns]
