"""
行数据值规整 - 把驱动返回的原生值转换为可比较、可 JSON 序列化的标量
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

# 规整后的标量：str / int / float / bool / None
Scalar = Optional[Any]
Row = Dict[str, Scalar]

NormalizerFunc = Callable[[Any], Scalar]


def _datetime(value: datetime) -> str:
    """去掉时区与微秒，统一为 YYYY-MM-DD HH:MM:SS"""
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def _time(value: time) -> str:
    return value.strftime("%H:%M:%S")


def _bytes(value: Any) -> str:
    return bytes(value).hex()


def _decimal(value: Decimal) -> str:
    """保留精确的小数文本，避免转 float 丢精度"""
    return str(value)


def _uuid(value: uuid.UUID) -> str:
    return str(value)


# 按类型注册的规整函数；datetime 是 date 的子类，必须排在前面
NORMALIZER_REGISTRY: List[Tuple[Type[Any], NormalizerFunc]] = [
    (datetime, _datetime),
    (date, _date),
    (time, _time),
    (bytes, _bytes),
    (bytearray, _bytes),
    (memoryview, _bytes),
    (Decimal, _decimal),
    (uuid.UUID, _uuid),
]


def normalize_value(value: Any) -> Scalar:
    """
    规整单个值

    示例:
        >>> normalize_value(datetime(2024, 1, 5, 10, 0, 0))
        '2024-01-05 10:00:00'
        >>> normalize_value(b"\\x01\\xff")
        '01ff'
        >>> normalize_value(Decimal("12.50"))
        '12.50'
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    for value_type, func in NORMALIZER_REGISTRY:
        if isinstance(value, value_type):
            return func(value)

    return str(value)


def normalize_row(row: Mapping[str, Any]) -> Row:
    """规整整行，保持列顺序"""
    return {key: normalize_value(value) for key, value in row.items()}


def text_form(value: Any) -> str:
    """
    值的文本形式，过滤条件比较时使用

    布尔值映射为 "1"/"0"，与数据库中的存储形式一致。
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(normalize_value(value))
