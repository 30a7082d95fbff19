"""
CLI 命令行入口 - 使用 Click 框架
"""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

import click
from pydantic import ValidationError as ModelValidationError

from db_synker import __version__
from db_synker.config import ConfigError, load_config, save_config_template
from db_synker.exceptions import SynkerError
from db_synker.models.filters import FilterOperator, FilterPredicate
from db_synker.models.sync_config import AppConfig
from db_synker.models.table import TableRef
from db_synker.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CONFIG = "synker.yaml"


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(),
    default=DEFAULT_CONFIG,
    envvar="SYNKER_CONFIG",
    show_default=True,
    help="配置文件路径",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default=None,
    help="日志级别（默认取配置文件中的 log_level）",
)
@click.version_option(version=__version__, prog_name="db-synker")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: Optional[str]) -> None:
    """
    DB Synker 表同步引擎 CLI

    按 CRON 计划或手动把关系型数据库中的表分批推送到远端接入端点。
    """
    configure_logging(log_level=log_level or "WARNING", json_format=False)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log_level"] = log_level


# ============================================================================
# 辅助函数
# ============================================================================

def _load(ctx: click.Context) -> AppConfig:
    """加载配置并按配置重新设置日志，失败时退出"""
    config_path = ctx.obj["config_path"]
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ 配置错误: {e}", err=True)
        sys.exit(1)

    configure_logging(
        log_level=ctx.obj.get("log_level") or config.log_level,
        json_format=config.json_logs,
    )
    return config


def _with_engine(ctx: click.Context, action: Callable[[Any], Awaitable[T]]) -> T:
    """创建引擎执行一个操作，结束后释放资源；业务错误以 ✗ 输出并退出"""
    from db_synker.core.engine import SyncEngine

    config = _load(ctx)

    async def runner() -> T:
        engine = SyncEngine(config)
        try:
            return await action(engine)
        finally:
            await engine.stop()

    try:
        return asyncio.run(runner())
    except SynkerError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


def _parse_table(value: str) -> TableRef:
    """解析 "库名.表名" """
    db_name, sep, table_name = value.partition(".")
    if not sep or not db_name.strip() or not table_name.strip():
        raise click.BadParameter(f"表必须写成 库名.表名: {value}")
    return TableRef(db_name=db_name, table_name=table_name)


def _parse_filter(value: str) -> FilterPredicate:
    """
    解析 "列名:运算符:值"

    range 的值写成 "下界,上界"。

    示例:
        status:eq:paid
        created_at:range:2024-01-01,2024-01-31
    """
    parts = value.split(":", 2)
    if len(parts) != 3:
        raise click.BadParameter(f"过滤条件必须写成 列名:运算符:值: {value}")
    column, operator, raw = parts
    try:
        op = FilterOperator(operator.strip().lower())
    except ValueError:
        choices = ", ".join(o.value for o in FilterOperator)
        raise click.BadParameter(f"未知运算符 {operator}，可选: {choices}")

    filter_value: Any = raw
    if op == FilterOperator.RANGE:
        filter_value = [bound.strip() for bound in raw.split(",", 1)]
    try:
        return FilterPredicate(column=column.strip(), operator=op, value=filter_value)
    except ModelValidationError as e:
        raise click.BadParameter(f"过滤条件无效 {value}: {e}")


def _format_filter(predicate: FilterPredicate) -> str:
    value = predicate.value
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    return f"{predicate.column} {predicate.operator.value} {value}"


# ============================================================================
# 配置
# ============================================================================

@cli.command()
@click.argument("output_path", type=click.Path(), default=DEFAULT_CONFIG)
def init(output_path: str) -> None:
    """
    生成配置文件模板

    示例:
        db-synker init synker.yaml
    """
    path = Path(output_path)

    if path.exists():
        click.confirm(f"文件 {output_path} 已存在，是否覆盖？", abort=True)

    save_config_template(output_path)
    click.echo(f"✓ 配置模板已生成: {output_path}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str) -> None:
    """
    验证配置文件

    示例:
        db-synker validate synker.yaml
    """
    try:
        config = load_config(config_path)
        click.echo("✓ 配置验证通过")
        click.echo(f"  源类型: {config.source.type}")
        click.echo(f"  接入端点: {config.ingestion.url}")
        click.echo(f"  存储: {config.storage.backend.value} ({config.storage.path})")
        click.echo(f"  批量大小: {config.effective_batch_size}")
    except ConfigError as e:
        click.echo(f"✗ 配置错误: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"✗ 验证失败: {e}", err=True)
        sys.exit(1)


# ============================================================================
# 浏览
# ============================================================================

@cli.command()
@click.pass_context
def databases(ctx: click.Context) -> None:
    """列出源中的数据库"""
    names = _with_engine(ctx, lambda engine: engine.list_databases())
    for name in names:
        click.echo(name)


@cli.command()
@click.argument("db_name")
@click.pass_context
def tables(ctx: click.Context, db_name: str) -> None:
    """列出数据库中的表"""
    names = _with_engine(ctx, lambda engine: engine.list_tables(db_name))
    for name in names:
        click.echo(name)


@cli.command()
@click.argument("db_name")
@click.argument("table_name")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, show_default=True, help="行数")
@click.pass_context
def preview(ctx: click.Context, db_name: str, table_name: str, limit: int) -> None:
    """
    预览表数据（每行一个 JSON 对象）

    示例:
        db-synker preview shop orders -n 5
    """
    rows = _with_engine(ctx, lambda engine: engine.preview(db_name, table_name, limit))
    for row in rows:
        click.echo(json.dumps(row, ensure_ascii=False, default=str))


# ============================================================================
# 同步
# ============================================================================

@cli.command()
@click.argument("db_name")
@click.argument("table_names", nargs=-1, required=True)
@click.pass_context
def sync(ctx: click.Context, db_name: str, table_names: Tuple[str, ...]) -> None:
    """
    立即同步一张或多张表

    已保存的过滤条件会被应用，结果写入审计日志。

    示例:
        db-synker sync shop orders customers
    """
    async def action(engine: Any) -> List[Any]:
        results = []
        for table_name in table_names:
            results.append((table_name, await engine.sync_table(db_name, table_name)))
        return results

    failed = 0
    for table_name, result in _with_engine(ctx, action):
        if result.success:
            click.echo(f"✓ {db_name}.{table_name}: {result.message} ({result.batches} 批)")
        else:
            failed += 1
            click.echo(f"✗ {db_name}.{table_name}: {result.error}", err=True)

    if failed:
        sys.exit(1)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """
    以守护进程方式运行定时计划

    按 Ctrl+C 或发送 SIGTERM 停止。

    示例:
        db-synker run
    """
    from db_synker.core.engine import SyncEngine

    config = _load(ctx)

    async def serve() -> None:
        engine = SyncEngine(config)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.ensure_future(engine.stop()))
            except NotImplementedError:
                # Windows 上由 KeyboardInterrupt 处理
                pass

        await engine.start()
        schedule = engine.scheduler.get_schedule()
        if schedule is None:
            click.echo("当前没有定时计划，使用 `db-synker schedule set` 设置")
        else:
            click.echo(f"计划: {schedule.schedule_expression}{' (已暂停)' if schedule.paused else ''}")
            for fire_at in engine.scheduler.get_next_runs():
                click.echo(f"  下次运行: {fire_at.isoformat()}")
        click.echo("按 Ctrl+C 停止...")

        try:
            await engine.run_forever()
        finally:
            if engine.is_running():
                await engine.stop()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass
    click.echo("✓ 调度已停止")


# ============================================================================
# 定时计划
# ============================================================================

@cli.group()
def schedule() -> None:
    """管理定时计划"""


@schedule.command("show")
@click.pass_context
def schedule_show(ctx: click.Context) -> None:
    """显示当前计划与后续触发时间"""
    async def action(engine: Any) -> Any:
        config = engine.scheduler.load()
        return config, engine.scheduler.get_next_runs()

    config, next_runs = _with_engine(ctx, action)
    if config is None:
        click.echo("当前没有定时计划")
        return

    click.echo(f"表达式: {config.schedule_expression}")
    click.echo(f"状态: {'已暂停' if config.paused else '运行中'}")
    click.echo("同步表:")
    for table in config.tables:
        click.echo(f"  - {table}")
    for fire_at in next_runs:
        click.echo(f"下次运行: {fire_at.isoformat()}")


@schedule.command("set")
@click.argument("expression")
@click.argument("table_args", nargs=-1, required=True)
@click.pass_context
def schedule_set(ctx: click.Context, expression: str, table_args: Tuple[str, ...]) -> None:
    """
    设置计划（替换已有计划）

    示例:
        db-synker schedule set "*/30 * * * *" shop.orders shop.customers
    """
    refs = [_parse_table(arg) for arg in table_args]

    async def action(engine: Any) -> Any:
        next_runs = engine.scheduler.set_schedule(expression, refs)
        return next_runs, len(engine.scheduler.runtime.tables)

    next_runs, table_count = _with_engine(ctx, action)
    click.echo(f"✓ 计划已保存: {expression.strip()} ({table_count} 张表)")
    for fire_at in next_runs:
        click.echo(f"  下次运行: {fire_at.isoformat()}")


@schedule.command("clear")
@click.pass_context
def schedule_clear(ctx: click.Context) -> None:
    """清除计划"""
    async def action(engine: Any) -> Any:
        return engine.scheduler.clear_schedule()

    _with_engine(ctx, action)
    click.echo("✓ 计划已清除")


@schedule.command("pause")
@click.pass_context
def schedule_pause(ctx: click.Context) -> None:
    """暂停计划（保留表达式与同步表）"""
    async def action(engine: Any) -> Any:
        return engine.scheduler.set_paused(True)

    _with_engine(ctx, action)
    click.echo("✓ 计划已暂停")


@schedule.command("resume")
@click.pass_context
def schedule_resume(ctx: click.Context) -> None:
    """恢复计划"""
    async def action(engine: Any) -> Any:
        return engine.scheduler.set_paused(False)

    _with_engine(ctx, action)
    click.echo("✓ 计划已恢复")


# ============================================================================
# 过滤条件
# ============================================================================

@cli.group()
def filters() -> None:
    """管理按表保存的行过滤条件"""


@filters.command("show")
@click.pass_context
def filters_show(ctx: click.Context) -> None:
    """显示全部过滤条件"""
    async def action(engine: Any) -> Any:
        return engine.filter_store.load_all()

    stored = _with_engine(ctx, action)
    if not stored:
        click.echo("没有保存的过滤条件")
        return
    for key, predicates in stored.items():
        click.echo(f"{key}:")
        for predicate in predicates:
            click.echo(f"  {_format_filter(predicate)}")


@filters.command("set")
@click.argument("db_name")
@click.argument("table_name")
@click.option(
    "--filter",
    "-f",
    "filter_args",
    multiple=True,
    required=True,
    help="过滤条件 列名:运算符:值（range 写成 下界,上界），可重复",
)
@click.pass_context
def filters_set(
    ctx: click.Context,
    db_name: str,
    table_name: str,
    filter_args: Tuple[str, ...]
) -> None:
    """
    保存某张表的过滤条件（替换已有条件）

    示例:
        db-synker filters set shop orders -f status:eq:paid -f created_at:range:2024-01-01,2024-01-31
    """
    predicates = [_parse_filter(arg) for arg in filter_args]

    async def action(engine: Any) -> Any:
        return engine.filter_store.set_filters(db_name, table_name, predicates)

    saved = _with_engine(ctx, action)
    click.echo(f"✓ 已保存 {len(saved)} 个过滤条件: {db_name}.{table_name}")


@filters.command("clear")
@click.argument("db_name")
@click.argument("table_name")
@click.pass_context
def filters_clear(ctx: click.Context, db_name: str, table_name: str) -> None:
    """删除某张表的过滤条件"""
    async def action(engine: Any) -> Any:
        return engine.filter_store.set_filters(db_name, table_name, [])

    _with_engine(ctx, action)
    click.echo(f"✓ 过滤条件已删除: {db_name}.{table_name}")


# ============================================================================
# 审计日志
# ============================================================================

@cli.command()
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, show_default=True, help="条数")
@click.option("--clear", "clear_logs", is_flag=True, help="清空审计日志")
@click.pass_context
def logs(ctx: click.Context, limit: int, clear_logs: bool) -> None:
    """
    查看同步审计日志（最新在前）

    示例:
        db-synker logs -n 50
    """
    if clear_logs:
        click.confirm("确定清空全部审计日志？", abort=True)

        async def clear_action(engine: Any) -> None:
            engine.audit_log.clear()

        _with_engine(ctx, clear_action)
        click.echo("✓ 审计日志已清空")
        return

    async def action(engine: Any) -> Any:
        return engine.recent_logs(limit)

    entries = _with_engine(ctx, action)
    if not entries:
        click.echo("暂无同步记录")
        return
    for entry in entries:
        icon = "✓" if entry.is_success() else "✗"
        count = f" [{entry.synced_count} 行]" if entry.synced_count is not None else ""
        click.echo(
            f"{icon} {entry.timestamp} [{entry.trigger.value}] "
            f"{entry.db_name}.{entry.table_name}{count}: {entry.message or ''}"
        )


if __name__ == "__main__":
    cli()
