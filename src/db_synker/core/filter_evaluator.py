"""
行过滤求值 - 内存求值与参数化 SQL 谓词两种形式

两种形式共用同一个三段式取值解析:
    1. 日期: 两侧文本都以 YYYY-MM-DD 开头 → 只比较前 10 个字符
    2. 数值: 两侧文本都是数字字面量 → 按数值比较
    3. 文本: 其余情况按字符串比较

SQL 形式把解析过程写成 CASE WHEN <文本> REGEXP ? THEN ... ELSE ... END，
正则模式本身也作为绑定参数传入，因此两种形式对同一组条件结果一致。
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from db_synker.models.filters import FilterOperator, FilterPredicate, active_predicates
from db_synker.utils.values import text_form

# 同时兼容 Python re、MySQL REGEXP 的写法（不使用 \d）
DATE_PATTERN = r"^[0-9]{4}-[0-9]{2}-[0-9]{2}"
NUMBER_PATTERN = r"^[-+]?([0-9]+[.]?[0-9]*|[.][0-9]+)([eE][-+]?[0-9]+)?$"

_DATE_RE = re.compile(DATE_PATTERN)
_NUMBER_RE = re.compile(NUMBER_PATTERN)
_INTEGER_RE = re.compile(r"^[-+]?[0-9]+$")

DATE_PREFIX_LENGTH = 10


class ValueKind(str, Enum):
    """比较时采用的取值类别"""
    DATE = "date"
    NUMBER = "number"
    TEXT = "text"


def is_date_like(text: str) -> bool:
    return _DATE_RE.match(text) is not None


def is_number_like(text: str) -> bool:
    return _NUMBER_RE.match(text) is not None


def resolve_kind(left: str, right: str) -> ValueKind:
    """三段式解析两侧文本的比较类别"""
    if is_date_like(left) and is_date_like(right):
        return ValueKind.DATE
    if is_number_like(left) and is_number_like(right):
        return ValueKind.NUMBER
    return ValueKind.TEXT


def compare_values(left: Any, right: Any) -> int:
    """
    比较两个值

    返回:
        -1 / 0 / 1，分别表示 left 小于 / 等于 / 大于 right
    """
    a, b = text_form(left), text_form(right)
    kind = resolve_kind(a, b)

    if kind == ValueKind.DATE:
        x: Any = a[:DATE_PREFIX_LENGTH]
        y: Any = b[:DATE_PREFIX_LENGTH]
    elif kind == ValueKind.NUMBER:
        x, y = Decimal(a), Decimal(b)
    else:
        x, y = a, b

    return (x > y) - (x < y)


_CHECKS: Dict[FilterOperator, Callable[[int], bool]] = {
    FilterOperator.EQ: lambda c: c == 0,
    FilterOperator.GT: lambda c: c > 0,
    FilterOperator.GTE: lambda c: c >= 0,
    FilterOperator.LT: lambda c: c < 0,
    FilterOperator.LTE: lambda c: c <= 0,
}


def matches_predicate(row: Mapping[str, Any], predicate: FilterPredicate) -> bool:
    """
    单个条件求值

    不生效的条件恒为真；行中该列为空（或缺失）时不满足任何生效条件。
    """
    if not predicate.is_active():
        return True

    value = row.get(predicate.column)
    if value is None:
        return False

    if predicate.operator == FilterOperator.RANGE:
        low, high = predicate.bounds()  # type: ignore[misc]
        return compare_values(value, low) >= 0 and compare_values(value, high) <= 0

    return _CHECKS[predicate.operator](compare_values(value, predicate.value))


def matches_filters(
    row: Mapping[str, Any],
    predicates: Optional[Sequence[FilterPredicate]]
) -> bool:
    """所有条件取交集；空条件列表恒为真"""
    return all(matches_predicate(row, p) for p in predicates or [])


def filter_rows(
    rows: List[Dict[str, Any]],
    predicates: Optional[Sequence[FilterPredicate]]
) -> List[Dict[str, Any]]:
    """按条件筛选行"""
    effective = active_predicates(list(predicates or []))
    if not effective:
        return rows
    return [row for row in rows if matches_filters(row, effective)]


def unknown_columns(
    predicates: Optional[Sequence[FilterPredicate]],
    columns: Sequence[str]
) -> List[str]:
    """
    生效条件中引用了表中不存在的列

    列名按原样（区分大小写）匹配，与内存求值按行字典取值一致。
    引用了不存在列的条件不满足任何行，提供者据此直接返回空结果，
    而不是交给数据库解释（SQLite 会把不存在的 "列名" 当作字符串字面量）。
    """
    known = set(columns)
    return [p.column for p in active_predicates(list(predicates or [])) if p.column not in known]


# ============================================================================
# 参数化 SQL 谓词
# ============================================================================

@dataclass(frozen=True)
class SQLDialect:
    """
    SQL 方言差异

    属性:
        name: 方言名
        placeholder: 参数占位符
        quote_char: 标识符引号
        text_type: CAST 到文本时使用的类型
    """
    name: str
    placeholder: str
    quote_char: str
    text_type: str

    def quote(self, identifier: str) -> str:
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def as_text(self, expr: str) -> str:
        return f"CAST({expr} AS {self.text_type})"


SQLITE = SQLDialect(name="sqlite", placeholder="?", quote_char='"', text_type="TEXT")
MYSQL = SQLDialect(name="mysql", placeholder="%s", quote_char="`", text_type="CHAR")

_SQL_OPERATORS: Dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


def numeric_param(text: str) -> Any:
    """
    数值比较的绑定参数

    整数字面量按 int 传入，与数据库的整数比较保持精确；其余按 float。

    示例:
        >>> numeric_param("9007199254740993")
        9007199254740993
        >>> numeric_param("2.5")
        2.5
    """
    if _INTEGER_RE.match(text):
        return int(text)
    return float(text)


def _comparison_sql(
    column: str,
    sql_op: str,
    value: Any,
    dialect: SQLDialect
) -> Tuple[str, List[Any]]:
    """单个比较的 SQL 片段，按比较值的类别选择 CASE 分支"""
    p = dialect.placeholder
    col_text = dialect.as_text(dialect.quote(column))
    value_text = text_form(value)

    if is_date_like(value_text):
        sql = (
            f"(CASE WHEN {col_text} REGEXP {p} "
            f"THEN SUBSTR({col_text}, 1, {DATE_PREFIX_LENGTH}) {sql_op} {p} "
            f"ELSE {col_text} {sql_op} {p} END)"
        )
        return sql, [DATE_PATTERN, value_text[:DATE_PREFIX_LENGTH], value_text]

    if is_number_like(value_text):
        sql = (
            f"(CASE WHEN {col_text} REGEXP {p} "
            f"THEN ({dialect.quote(column)} + 0) {sql_op} {p} "
            f"ELSE {col_text} {sql_op} {p} END)"
        )
        return sql, [NUMBER_PATTERN, numeric_param(value_text), value_text]

    return f"({col_text} {sql_op} {p})", [value_text]


def build_predicate_sql(
    predicate: FilterPredicate,
    dialect: SQLDialect
) -> Tuple[str, List[Any]]:
    """
    单个条件的 SQL 片段

    返回:
        (sql, params)；条件不生效时为 ("", [])
    """
    if not predicate.is_active():
        return "", []

    if predicate.operator == FilterOperator.RANGE:
        low, high = predicate.bounds()  # type: ignore[misc]
        low_sql, low_params = _comparison_sql(predicate.column, ">=", low, dialect)
        high_sql, high_params = _comparison_sql(predicate.column, "<=", high, dialect)
        return f"({low_sql} AND {high_sql})", low_params + high_params

    return _comparison_sql(
        predicate.column,
        _SQL_OPERATORS[predicate.operator],
        predicate.value,
        dialect
    )


def build_where_clause(
    predicates: Optional[Sequence[FilterPredicate]],
    dialect: SQLDialect
) -> Tuple[str, List[Any]]:
    """
    构建 WHERE 子句（不含 WHERE 关键字）

    示例:
        >>> sql, params = build_where_clause(
        ...     [FilterPredicate(column="qty", operator="gt", value=5)], SQLITE)
        >>> sql
        '(CASE WHEN CAST("qty" AS TEXT) REGEXP ? THEN ("qty" + 0) > ? ELSE CAST("qty" AS TEXT) > ? END)'

    返回:
        (sql, params)；没有生效条件时 sql 为空字符串
    """
    fragments: List[str] = []
    params: List[Any] = []
    for predicate in predicates or []:
        sql, predicate_params = build_predicate_sql(predicate, dialect)
        if sql:
            fragments.append(sql)
            params.extend(predicate_params)
    return " AND ".join(fragments), params


def sqlite_regexp(pattern: str, value: Any) -> bool:
    """
    SQLite 的 REGEXP 实现，需通过 create_function("REGEXP", 2, ...) 注册

    `X REGEXP Y` 在 SQLite 中被改写为 regexp(Y, X)。
    """
    if value is None:
        return False
    return re.search(pattern, str(value)) is not None
