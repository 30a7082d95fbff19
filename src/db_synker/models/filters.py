"""
行过滤条件模型
"""

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field


class FilterOperator(str, Enum):
    """过滤运算符"""
    EQ = "eq"          # 等于
    GT = "gt"          # 大于
    GTE = "gte"        # 大于等于
    LT = "lt"          # 小于
    LTE = "lte"        # 小于等于
    RANGE = "range"    # 闭区间 [low, high]


class FilterPredicate(BaseModel):
    """
    单个过滤条件

    属性:
        column: 列名
        operator: 运算符
        value: 比较值；range 时为 [low, high]

    值为空（None/空字符串）或区间不完整的条件视为"无约束"，
    求值时直接跳过，而不是判定为不匹配。
    """
    column: str = Field(..., min_length=1, description="列名")
    operator: FilterOperator = Field(..., description="运算符")
    value: Any = Field(default=None, description="比较值，range 时为 [low, high]")

    def bounds(self) -> Optional[Tuple[Any, Any]]:
        """range 条件的上下界，不完整时返回 None"""
        if not isinstance(self.value, (list, tuple)) or len(self.value) < 2:
            return None
        low, high = self.value[0], self.value[1]
        if _is_blank(low) or _is_blank(high):
            return None
        return low, high

    def is_active(self) -> bool:
        """条件是否生效"""
        if self.operator == FilterOperator.RANGE:
            return self.bounds() is not None
        return not _is_blank(self.value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def active_predicates(predicates: Optional[List[FilterPredicate]]) -> List[FilterPredicate]:
    """过滤掉不生效的条件"""
    return [p for p in predicates or [] if p.is_active()]
