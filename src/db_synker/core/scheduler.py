"""
CRON 调度器 - 全局唯一的定时同步计划

状态机:
    NoSchedule → Active ⇄ Paused
    Active / Paused → NoSchedule（清除）

暂停不注销任务：任务照常触发，触发时检查暂停标志后直接返回，
恢复时无需重新校验或注册表达式。
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Set, Union

from croniter import croniter
from pydantic import ValidationError as ModelValidationError

from db_synker.core.replicator import TableReplicator
from db_synker.exceptions import ValidationError
from db_synker.models.schedule import ScheduleConfig
from db_synker.models.sync_log import SyncLogEntry, SyncResult, SyncTrigger
from db_synker.models.table import TableRef, dedupe_tables
from db_synker.storage.audit_log import AuditLog
from db_synker.storage.document_store import DocumentStore
from db_synker.storage.filter_store import FilterStore
from db_synker.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

SCHEDULE_KEY = "schedule"
DEFAULT_NEXT_RUNS = 2

# 落后超过该秒数（如系统休眠）时不补触发，从当前时间重新计算
MISSED_TOLERANCE_SECONDS = 60.0

Clock = Callable[[], datetime]
SleepFunc = Callable[[float], Awaitable[Any]]
TableInput = Union[TableRef, Mapping[str, Any]]


def local_now() -> datetime:
    """带本地时区的当前时间"""
    return datetime.now().astimezone()


def is_valid_expression(expression: Optional[str]) -> bool:
    """是否为合法的五段式 CRON 表达式"""
    if not expression or not expression.strip():
        return False
    expr = expression.strip()
    return len(expr.split()) == 5 and croniter.is_valid(expr)


def next_fire_times(
    expression: Optional[str],
    count: int = DEFAULT_NEXT_RUNS,
    start: Optional[datetime] = None
) -> List[datetime]:
    """
    计算表达式之后的 count 个触发时间

    表达式为空或非法时返回空列表。
    """
    if count < 1 or not is_valid_expression(expression):
        return []
    itr = croniter(expression.strip(), start or local_now())  # type: ignore[union-attr]
    return [itr.get_next(datetime) for _ in range(count)]


class CronJob:
    """
    单个定时任务

    一个 asyncio 任务循环地睡眠到 croniter 给出的下次触发时间，然后把
    回调作为独立任务启动（不等待），因此上一轮未结束时下一轮照常触发，
    是否丢弃由回调自己的进行中标志决定。

    stop() 只取消计时循环，已经启动的回调会执行完毕。
    """

    def __init__(
        self,
        expression: str,
        callback: Callable[[], Awaitable[Any]],
        clock: Clock = local_now,
        sleep: SleepFunc = asyncio.sleep
    ):
        """
        参数:
            expression: 已校验的 CRON 表达式
            callback: 每次触发时调用的协程函数
            clock: 当前时间来源（测试可注入）
            sleep: 睡眠函数（测试可注入）
        """
        self.expression = expression
        self.callback = callback
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self.fired = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def inflight(self) -> int:
        """已启动但尚未结束的回调个数"""
        return len(self._inflight)

    def start(self) -> None:
        """启动计时循环，需要在事件循环中调用"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        """停止计时循环"""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait_inflight(self) -> None:
        """等待已启动的回调全部结束"""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _loop(self) -> None:
        itr = croniter(self.expression, self._clock())
        while True:
            fire_at = itr.get_next(datetime)
            now = self._clock()
            delay = (fire_at - now).total_seconds()

            if delay < -MISSED_TOLERANCE_SECONDS:
                logger.warning(
                    "cron_tick_missed",
                    expression=self.expression,
                    scheduled_at=fire_at.isoformat()
                )
                itr = croniter(self.expression, now)
                continue

            if delay > 0:
                await self._sleep(delay)
            self._fire()

    def _fire(self) -> None:
        self.fired += 1
        task = asyncio.get_running_loop().create_task(self._run_callback())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_callback(self) -> None:
        try:
            await self.callback()
        except Exception as e:
            # 触发回调中的任何异常都不能逃逸到事件循环
            logger.error("cron_callback_failed", expression=self.expression, error=str(e), exc_info=True)


@dataclass
class SchedulerRuntime:
    """
    调度器进程内状态（不持久化）

    属性:
        job: 当前注册的任务
        expression: 当前表达式
        tables: 当前同步表
        paused: 是否暂停
        running: 是否有一轮定时同步正在执行
    """
    job: Optional[CronJob] = None
    expression: Optional[str] = None
    tables: List[TableRef] = field(default_factory=list)
    paused: bool = False
    running: bool = False

    @property
    def has_schedule(self) -> bool:
        return bool(self.expression and self.tables)

    def reset(self) -> None:
        """回到 NoSchedule（不处理 job，由调用方先停止）"""
        self.job = None
        self.expression = None
        self.tables = []
        self.paused = False


class CronScheduler:
    """
    定时同步调度器

    持有唯一的 SchedulerRuntime，所有状态变更都经过本类方法，
    保证任一时刻至多一个注册任务。持久化的计划配置是重启后的唯一依据。

    未调用 start() 时（例如命令行单次操作）只更新持久化配置与进程内状态，
    不注册计时任务。
    """

    def __init__(
        self,
        replicator: TableReplicator,
        audit_log: AuditLog,
        store: DocumentStore,
        filter_store: Optional[FilterStore] = None,
        next_runs_count: int = DEFAULT_NEXT_RUNS,
        clock: Clock = local_now,
        job_factory: Callable[..., CronJob] = CronJob
    ):
        """
        初始化调度器

        参数:
            replicator: 单表同步器
            audit_log: 审计日志
            store: 计划配置所在的文档存储
            filter_store: 过滤条件存储（可选），同步时按表读取
            next_runs_count: set_schedule 返回的后续触发时间个数
            clock: 当前时间来源
            job_factory: 任务构造函数（测试可注入）
        """
        self.replicator = replicator
        self.audit_log = audit_log
        self.store = store
        self.filter_store = filter_store
        self.next_runs_count = next_runs_count
        self._clock = clock
        self._job_factory = job_factory
        self.runtime = SchedulerRuntime()
        self._started = False
        # 已停止但回调仍在执行的任务，shutdown 时一并等待
        self._retired: List[CronJob] = []

    # ========================================================================
    # 持久化
    # ========================================================================

    def _read_config(self) -> Optional[ScheduleConfig]:
        raw = self.store.get(SCHEDULE_KEY)
        if raw is None:
            return None
        try:
            return ScheduleConfig.model_validate(raw)
        except ModelValidationError as e:
            logger.warning("schedule_config_malformed", error=str(e))
            return None

    def _write_config(self) -> None:
        config = ScheduleConfig(
            schedule_expression=self.runtime.expression or "",
            tables=self.runtime.tables,
            paused=self.runtime.paused
        )
        self.store.put(SCHEDULE_KEY, config.model_dump(mode="json", by_alias=True))

    def get_schedule(self) -> Optional[ScheduleConfig]:
        """当前持久化的计划，不存在时返回 None"""
        return self._read_config()

    def load(self) -> Optional[ScheduleConfig]:
        """
        从持久化配置恢复进程内状态

        配置损坏或表达式非法时删除配置并记录警告，不抛出。
        """
        raw_present = self.store.get(SCHEDULE_KEY) is not None
        config = self._read_config()

        if config is None or not is_valid_expression(config.schedule_expression):
            if raw_present:
                logger.warning("schedule_config_discarded", reason="invalid saved schedule")
                self.store.delete(SCHEDULE_KEY)
            self._stop_job()
            self.runtime.reset()
            return None

        self.runtime.expression = config.schedule_expression
        self.runtime.tables = list(config.tables)
        self.runtime.paused = config.paused
        return config

    # ========================================================================
    # 生命周期
    # ========================================================================

    async def start(self) -> None:
        """进程启动：恢复配置，若存在计划则注册任务并还原暂停状态"""
        self._started = True
        config = self.load()
        if config is not None:
            self._register_job()
            logger.info(
                "scheduler_restored",
                expression=config.schedule_expression,
                tables=len(config.tables),
                paused=config.paused
            )
        else:
            logger.info("scheduler_started_without_schedule")

    async def shutdown(self) -> None:
        """停止任务并等待进行中的同步结束；持久化配置保持不变"""
        self._stop_job()
        self._started = False
        retired, self._retired = self._retired, []
        for job in retired:
            await job.wait_inflight()
        logger.info("scheduler_stopped")

    def _stop_job(self) -> None:
        job = self.runtime.job
        if job is not None:
            job.stop()
            logger.debug("cron_job_stopped", expression=job.expression)
            self._retired = [j for j in self._retired if j.inflight]
            self._retired.append(job)
        self.runtime.job = None

    def _register_job(self) -> None:
        """注册新任务；调用前必须已停止旧任务"""
        if not self._started or not self.runtime.has_schedule:
            return
        async def tick() -> None:
            await self.run_scheduled_sync()

        job = self._job_factory(self.runtime.expression, tick, clock=self._clock)
        job.start()
        self.runtime.job = job
        logger.debug("cron_job_registered", expression=job.expression, tables=len(self.runtime.tables))

    # ========================================================================
    # 计划操作
    # ========================================================================

    def set_schedule(
        self,
        expression: Optional[str],
        tables: Optional[Sequence[TableInput]]
    ) -> List[datetime]:
        """
        设置（或替换）计划

        参数:
            expression: CRON 表达式
            tables: 同步表，按 (库名, 表名) 去重

        返回:
            后续 next_runs_count 个触发时间；表达式或表为空时等同于清除，返回空列表

        异常:
            ValidationError: 表列表格式错误（不改变任何状态）；
                表达式非法（此时原有计划已被清除）
        """
        try:
            refs = dedupe_tables([
                t if isinstance(t, TableRef) else TableRef.model_validate(t)
                for t in tables or []
            ])
        except ModelValidationError as e:
            raise ValidationError(f"同步表格式错误: {e}")

        expr = (expression or "").strip()

        # 先停旧任务，保证替换过程中不会同时存在两个任务
        self._stop_job()

        if not expr or not refs:
            self.clear_schedule()
            return []

        if not is_valid_expression(expr):
            self.store.delete(SCHEDULE_KEY)
            self.runtime.reset()
            logger.warning("schedule_rejected", expression=expr)
            raise ValidationError(f"非法的 CRON 表达式: {expr}")

        self.runtime.expression = expr
        self.runtime.tables = refs
        self.runtime.paused = False
        self._write_config()
        self._register_job()

        logger.info("schedule_set", expression=expr, tables=[str(t) for t in refs])
        return next_fire_times(expr, self.next_runs_count, self._clock())

    def clear_schedule(self) -> List[datetime]:
        """清除计划：停止任务、删除配置、重置暂停标志"""
        self._stop_job()
        self.store.delete(SCHEDULE_KEY)
        self.runtime.reset()
        logger.info("schedule_cleared")
        return []

    def set_paused(self, paused: bool) -> ScheduleConfig:
        """
        暂停 / 恢复

        只改变暂停标志（进程内与持久化），不改变任务注册。

        异常:
            ValidationError: 当前没有计划
        """
        if not self.runtime.has_schedule:
            self.load()
        if not self.runtime.has_schedule:
            raise ValidationError("当前没有定时计划")

        self.runtime.paused = bool(paused)
        self._write_config()
        logger.info("schedule_paused" if paused else "schedule_resumed")
        return self._read_config()  # type: ignore[return-value]

    def get_next_runs(self, count: Optional[int] = None) -> List[datetime]:
        """当前表达式的后续触发时间，没有计划时返回空列表"""
        return next_fire_times(
            self.runtime.expression,
            count or self.next_runs_count,
            self._clock()
        )

    # ========================================================================
    # 定时执行
    # ========================================================================

    def _reconcile(self) -> bool:
        """
        触发时以持久化配置为准（命令行可能在别的进程修改了它）

        配置已被删除时停止任务、回到 NoSchedule 并返回 False；
        表达式或同步表有变化时采用新值，表达式变化时重新注册任务。
        """
        config = self._read_config()
        if config is None or not is_valid_expression(config.schedule_expression):
            if self.runtime.has_schedule:
                logger.info("schedule_removed_externally", expression=self.runtime.expression)
            self._stop_job()
            self.runtime.reset()
            return False

        expression_changed = config.schedule_expression != self.runtime.expression
        self.runtime.expression = config.schedule_expression
        self.runtime.tables = list(config.tables)
        self.runtime.paused = config.paused

        if expression_changed:
            self._stop_job()
            self._register_job()
            logger.info(
                "schedule_reloaded",
                expression=config.schedule_expression,
                tables=len(config.tables)
            )
        return True

    async def run_scheduled_sync(
        self,
        tables: Optional[Sequence[TableRef]] = None
    ) -> List[SyncLogEntry]:
        """
        执行一轮定时同步

        暂停中、计划已被删除或上一轮仍在执行时直接丢弃本轮（不排队）。
        未指定 tables 时同步持久化配置中的表。各表串行同步，
        每张表的结果独立写入审计日志，任何一张表失败都不影响其它表。
        本方法不会抛出异常。

        返回:
            本轮写入的审计日志条目
        """
        if self.runtime.running:
            logger.warning("scheduled_run_skipped", reason="previous run still in progress")
            return []

        if not self._reconcile():
            logger.info("scheduled_run_skipped", reason="no schedule")
            return []
        if self.runtime.paused:
            logger.info("scheduled_run_skipped", reason="paused")
            return []

        self.runtime.running = True
        targets = dedupe_tables(list(tables if tables is not None else self.runtime.tables))
        entries: List[SyncLogEntry] = []

        bind_context(trigger=SyncTrigger.SCHEDULED.value)
        logger.info("scheduled_run_start", tables=len(targets))
        try:
            for table in targets:
                entry = await self._sync_one(table)
                if entry is not None:
                    entries.append(entry)
        finally:
            self.runtime.running = False
            logger.info(
                "scheduled_run_complete",
                tables=len(targets),
                failed=sum(1 for e in entries if not e.is_success())
            )
            clear_context()

        return entries

    async def _sync_one(self, table: TableRef) -> Optional[SyncLogEntry]:
        try:
            filters = (
                self.filter_store.get_filters(table.db_name, table.table_name)
                if self.filter_store is not None else None
            )
            result = await self.replicator.replicate(table.db_name, table.table_name, filters)
        except Exception as e:
            logger.error("scheduled_table_failed", table=str(table), error=str(e), exc_info=True)
            result = SyncResult(success=False, error=str(e) or type(e).__name__)

        try:
            return self.audit_log.append(
                result.to_log_entry(table.db_name, table.table_name, SyncTrigger.SCHEDULED)
            )
        except Exception as e:
            logger.error("audit_log_append_failed", table=str(table), error=str(e))
            return None
