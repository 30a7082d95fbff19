"""
表结构转换 - 源端列元数据 → 目标端列定义，并控制单行编码字节预算
"""

import re
from typing import Dict, List, Optional

from db_synker.exceptions import SchemaError
from db_synker.models.table import (
    ColumnDefinition,
    SourceColumn,
    SourceTableSchema,
    TableSchema,
)
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)

# 目标端（MySQL InnoDB）单行最大字节数
ROW_SIZE_BUDGET = 65535

# utf8mb4 每字符最多 4 字节
BYTES_PER_CHAR = 4

# VARCHAR 可内联存储的最大字符数，超过则使用 TEXT
VARCHAR_INLINE_MAX = ROW_SIZE_BUDGET // BYTES_PER_CHAR

# TEXT 存储在行外，行内只占一个指针
TEXT_OVERHEAD_BYTES = 12

# 定长数值 / 时间类型的估算字节数
FIXED_COLUMN_BYTES = 8

DEFAULT_VARCHAR_LENGTH = 255
DEFAULT_DECIMAL_PRECISION = 18
DEFAULT_DECIMAL_SCALE = 0

TEXT_TYPE = "TEXT"

_INT_TYPES = {"int", "integer", "smallint", "tinyint", "mediumint", "bit", "bool", "boolean"}
_DECIMAL_TYPES = {"decimal", "numeric", "money", "smallmoney"}
_FLOAT_TYPES = {"float", "real", "double", "double precision"}
_CHAR_TYPES = {"char", "varchar", "nchar", "nvarchar", "character", "character varying"}
_TEXT_TYPES = {"text", "ntext", "tinytext", "mediumtext", "longtext", "json", "xml", "clob"}
_DATETIME_TYPES = {
    "date", "datetime", "datetime2", "smalldatetime", "timestamp", "datetimeoffset"
}
_UUID_TYPES = {"uniqueidentifier", "uuid"}
_BINARY_TYPES = {"binary", "varbinary", "image", "blob", "tinyblob", "mediumblob", "longblob"}

_VARCHAR_RE = re.compile(r"^VARCHAR\((\d+)\)$")


def map_column_type(column: SourceColumn) -> str:
    """
    按源端类型类别映射目标端类型

    示例:
        >>> map_column_type(SourceColumn(name="n", data_type="nvarchar", max_length=50))
        'VARCHAR(50)'
        >>> map_column_type(SourceColumn(name="n", data_type="nvarchar", max_length=-1))
        'TEXT'
    """
    data_type = column.data_type.strip().lower()

    if data_type in _INT_TYPES:
        return "INT"
    if data_type == "bigint":
        return "BIGINT"
    if data_type in _DECIMAL_TYPES:
        precision = column.precision or DEFAULT_DECIMAL_PRECISION
        scale = column.scale if column.scale is not None else DEFAULT_DECIMAL_SCALE
        return f"DECIMAL({precision},{scale})"
    if data_type in _FLOAT_TYPES:
        return "DECIMAL(18,6)"
    if data_type in _CHAR_TYPES:
        length = column.max_length
        if length == -1 or (length is not None and length > VARCHAR_INLINE_MAX):
            return TEXT_TYPE
        if length is not None and length > 0:
            return f"VARCHAR({length})"
        return f"VARCHAR({DEFAULT_VARCHAR_LENGTH})"
    if data_type in _TEXT_TYPES:
        return TEXT_TYPE
    if data_type in _DATETIME_TYPES:
        return "DATETIME"
    if data_type == "time":
        return "VARCHAR(50)"
    if data_type in _UUID_TYPES:
        return "VARCHAR(36)"
    if data_type in _BINARY_TYPES:
        return f"VARCHAR({DEFAULT_VARCHAR_LENGTH})"
    return f"VARCHAR({DEFAULT_VARCHAR_LENGTH})"


def varchar_length(type_name: str) -> Optional[int]:
    """VARCHAR(n) 的 n，其它类型返回 None"""
    match = _VARCHAR_RE.match(type_name)
    return int(match.group(1)) if match else None


def estimate_column_bytes(type_name: str) -> int:
    """估算单列在行内占用的字节数"""
    if type_name == TEXT_TYPE:
        return TEXT_OVERHEAD_BYTES
    length = varchar_length(type_name)
    if length is not None:
        return length * BYTES_PER_CHAR
    return FIXED_COLUMN_BYTES


def estimate_row_bytes(columns: List[ColumnDefinition]) -> int:
    """估算整行字节数"""
    return sum(estimate_column_bytes(c.type) for c in columns)


def fit_row_budget(
    columns: List[ColumnDefinition],
    budget: int = ROW_SIZE_BUDGET
) -> List[ColumnDefinition]:
    """
    把超出预算的行收缩到预算以内

    每次把剩余 VARCHAR 列中最长的一列（长度相同时取靠前的列）改为 TEXT，
    直到总字节数不超过预算或已无 VARCHAR 列。未超预算时原样返回。
    """
    total = estimate_row_bytes(columns)
    if total <= budget:
        return columns

    result = [c.model_copy() for c in columns]
    converted: List[str] = []

    while total > budget:
        widest: Optional[int] = None
        widest_length = -1
        for index, column in enumerate(result):
            length = varchar_length(column.type)
            # 严格大于，保证长度相同时选中靠前的列
            if length is not None and length > widest_length:
                widest, widest_length = index, length
        if widest is None:
            break

        column = result[widest]
        total -= estimate_column_bytes(column.type) - TEXT_OVERHEAD_BYTES
        result[widest] = column.model_copy(update={"type": TEXT_TYPE})
        converted.append(column.name)

    if total > budget:
        logger.warning(
            "row_budget_unreachable",
            estimated_bytes=total,
            budget=budget,
            columns=len(result)
        )
    else:
        logger.debug(
            "row_budget_applied",
            converted=converted,
            estimated_bytes=total,
            budget=budget
        )

    return result


def translate_schema(
    source: SourceTableSchema,
    budget: int = ROW_SIZE_BUDGET
) -> TableSchema:
    """
    源端表结构 → 目标端表结构

    参数:
        source: 源端列元数据与主键
        budget: 单行字节预算

    返回:
        TableSchema: 所有声明的主键列标记为主键；第一个主键列且源端为
        identity 时标记自增；源端无主键时以第一列作为唯一键

    异常:
        SchemaError: 源表没有任何列
    """
    if not source.columns:
        raise SchemaError("表没有任何列，无法确定 unique_keys")

    names = {c.name for c in source.columns}
    key_columns = [k for k in source.primary_keys if k in names]
    first_key = key_columns[0] if key_columns else None
    key_set = set(key_columns)

    columns: List[ColumnDefinition] = []
    for column in source.columns:
        is_key = column.name in key_set
        columns.append(ColumnDefinition(
            name=column.name,
            type=map_column_type(column),
            is_key=is_key,
            auto_increment=column.name == first_key and column.is_identity,
            nullable=column.nullable,
        ))

    unique_keys = key_columns or [source.columns[0].name]

    return TableSchema(
        columns=fit_row_budget(columns, budget),
        unique_keys=unique_keys
    )


def describe_schema(schema: TableSchema) -> Dict[str, int]:
    """结构摘要（用于日志）"""
    return {
        "columns": len(schema.columns),
        "keys": len(schema.unique_keys),
        "estimated_bytes": estimate_row_bytes(schema.columns),
    }
