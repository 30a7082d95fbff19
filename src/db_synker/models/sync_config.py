"""
应用配置模型 - 使用 Pydantic 进行配置验证
"""

import os
import re
from enum import Enum
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceType(str, Enum):
    """源数据提供者类型"""
    FIXTURE = "fixture"
    SQLITE = "sqlite"
    MYSQL = "mysql"


class StorageBackend(str, Enum):
    """持久化后端类型"""
    JSON = "json"
    SQLITE = "sqlite"


class Environment(str, Enum):
    """运行环境"""
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class FixtureSourceConfig(BaseModel):
    """
    静态夹具数据源配置（本地开发用）

    属性:
        path: 夹具文件路径（.yaml/.yml/.json）
    """
    model_config = ConfigDict(title="Fixture Source")

    type: Literal["fixture"] = Field(default="fixture", description="源类型")
    path: str = Field(..., min_length=1, description="夹具文件路径")


class SQLiteSourceConfig(BaseModel):
    """
    SQLite 数据源配置

    属性:
        data_dir: 数据目录，每个 <库名>.db 文件对应一个数据库
    """
    model_config = ConfigDict(title="SQLite Source")

    type: Literal["sqlite"] = Field(default="sqlite", description="源类型")
    data_dir: str = Field(..., min_length=1, description="数据目录")


class MySQLSourceConfig(BaseModel):
    """MySQL 数据源配置"""
    model_config = ConfigDict(title="MySQL Source")

    type: Literal["mysql"] = Field(default="mysql", description="源类型")
    host: str = Field(..., description="主机地址")
    port: int = Field(default=3306, ge=1, le=65535, description="端口")
    username: str = Field(..., description="用户名")
    password: str = Field(..., description="密码")
    charset: str = Field(default="utf8mb4", description="字符集")
    pool_size: int = Field(default=5, ge=1, le=50, description="连接池大小")
    system_databases: List[str] = Field(
        default_factory=lambda: ["information_schema", "mysql", "performance_schema", "sys"],
        description="列出数据库时排除的系统库"
    )


class IngestionConfig(BaseModel):
    """
    远端接入端点配置

    属性:
        base_url: 服务根地址（末尾斜杠会被去掉）
        sync_path: 同步接口路径
        timeout_seconds: 单次请求超时（秒）
        headers: 额外请求头
    """
    base_url: str = Field(..., min_length=1, description="服务根地址")
    sync_path: str = Field(default="/gofrugal-synker/sync", description="同步接口路径")
    timeout_seconds: float = Field(default=300.0, gt=0, description="单次请求超时（秒）")
    headers: Dict[str, str] = Field(default_factory=dict, description="额外请求头")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url 必须以 http:// 或 https:// 开头")
        return v.rstrip("/")

    @field_validator("sync_path")
    @classmethod
    def validate_sync_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.sync_path}"


class StorageConfig(BaseModel):
    """
    持久化配置（计划、日志、过滤条件）

    属性:
        backend: json=目录下每个文档一个 JSON 文件，sqlite=单个 SQLite 文件
        path: json 时为目录，sqlite 时为数据库文件
    """
    backend: StorageBackend = Field(default=StorageBackend.JSON, description="持久化后端")
    path: str = Field(default="data", min_length=1, description="存储路径")


class SchedulerSettings(BaseModel):
    """调度器配置"""
    next_runs_count: int = Field(default=2, ge=1, le=50, description="返回的后续触发时间个数")


class AppConfig(BaseModel):
    """
    同步引擎配置根对象

    属性:
        source: 源数据提供者配置
        ingestion: 远端接入端点配置
        storage: 持久化配置
        scheduler: 调度器配置
        environment: 运行环境，development 使用 dev_batch_size
        batch_size: 每次请求发送的行数，默认 5000
        dev_batch_size: 开发环境下的批量大小，默认 10
        max_log_entries: 审计日志保留条数，默认 500
        log_level: 日志级别，默认 INFO
        json_logs: 是否输出 JSON 格式日志
    """
    source: Union[FixtureSourceConfig, SQLiteSourceConfig, MySQLSourceConfig] = Field(
        ..., discriminator="type", description="源数据提供者配置"
    )
    ingestion: IngestionConfig = Field(..., description="远端接入端点配置")
    storage: StorageConfig = Field(default_factory=StorageConfig, description="持久化配置")
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings, description="调度器配置")
    environment: Environment = Field(default=Environment.PRODUCTION, description="运行环境")
    batch_size: int = Field(default=5000, ge=1, le=100000, description="批量大小")
    dev_batch_size: int = Field(default=10, ge=1, description="开发环境批量大小")
    max_log_entries: int = Field(default=500, ge=1, description="审计日志保留条数")
    log_level: str = Field(default="INFO", description="日志级别")
    json_logs: bool = Field(default=False, description="是否输出 JSON 日志")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"日志级别必须是以下之一: {valid_levels}")
        return v.upper()

    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def effective_batch_size(self) -> int:
        """实际使用的批量大小"""
        return self.dev_batch_size if self.is_dev else self.batch_size


_ENV_PATTERN = re.compile(r'\$\{([^}:-]+)(?::-([^}]*))?\}')


def expand_env_vars(value: Any) -> Any:
    """
    递归展开值中的环境变量

    支持格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}
    """
    if isinstance(value, str):
        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1)
            default_val = match.group(2)
            env_value = os.getenv(var_name)
            if env_value is None or env_value == "":
                if default_val is not None:
                    return default_val
                raise ValueError(f"环境变量 {var_name} 未设置且无默认值")
            return env_value

        return _ENV_PATTERN.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
