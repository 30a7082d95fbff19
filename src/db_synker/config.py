"""
配置加载模块 - 支持 YAML 和环境变量
"""

from pathlib import Path
from typing import Any, Dict

import yaml

from db_synker.models.sync_config import AppConfig, expand_env_vars


class ConfigError(Exception):
    """配置错误"""
    pass


def _build_config(raw_config: Any) -> AppConfig:
    if not isinstance(raw_config, dict):
        raise ConfigError("配置文件必须是一个对象")

    try:
        # 展开环境变量
        expanded_config: Dict[str, Any] = expand_env_vars(raw_config)
        return AppConfig(**expanded_config)
    except ValueError as e:
        raise ConfigError(f"配置验证失败: {e}")


def load_config(path: str | Path) -> AppConfig:
    """
    加载 YAML 配置文件

    支持环境变量替换，格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}

    参数:
        path: 配置文件路径

    返回:
        AppConfig: 验证后的配置对象

    异常:
        ConfigError: 配置文件不存在、格式错误或验证失败

    示例:
        ```python
        config = load_config("synker.yaml")
        print(config.ingestion.url)
        ```
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"读取配置文件失败: {e}")

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")

    return _build_config(raw_config)


def load_config_from_string(content: str) -> AppConfig:
    """
    从字符串加载配置（用于测试）

    参数:
        content: YAML 配置字符串

    返回:
        AppConfig: 验证后的配置对象
    """
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")
    return _build_config(raw_config)


def generate_config_template() -> str:
    """
    生成配置模板

    返回:
        str: YAML 配置模板
    """
    return '''# DB Synker 同步引擎配置

# 源数据配置（三选一）
source:
  type: "mysql"
  host: "${MYSQL_HOST:-localhost}"
  port: 3306
  username: "${MYSQL_USER}"
  password: "${MYSQL_PASSWORD}"

# source:
#   type: "sqlite"
#   data_dir: "./databases"      # 每个 <库名>.db 文件即一个数据库

# source:
#   type: "fixture"
#   path: "./dev-tables.yaml"    # 本地开发用静态数据

# 远端接入端点
ingestion:
  base_url: "${SYNKER_BASE_URL}"
  sync_path: "/gofrugal-synker/sync"
  timeout_seconds: 300

# 计划、审计日志、过滤条件的持久化
storage:
  backend: "json"                # json=目录下每个文档一个文件, sqlite=单文件
  path: "./data"

scheduler:
  next_runs_count: 2             # 设置计划后返回的后续触发时间个数

environment: "production"        # development 时使用 dev_batch_size
batch_size: 5000                 # 每次请求发送的行数
dev_batch_size: 10
max_log_entries: 500             # 审计日志保留条数
log_level: "INFO"                # 日志级别 (DEBUG, INFO, WARNING, ERROR)
json_logs: false
'''


def save_config_template(path: str | Path) -> None:
    """
    保存配置模板到文件

    参数:
        path: 输出文件路径
    """
    config_path = Path(path)
    config_path.write_text(generate_config_template(), encoding="utf-8")
