"""StatusReporter -- 周期性输出系统状态日志

每隔 status_log_interval_s 记录一次各状态计数与停滞任务，
供运维在日志中发现卡住的依赖链。
"""

import asyncio
import contextlib

import structlog
from taskmesh.core.engine import CoordinationEngine

log = structlog.get_logger()


class StatusReporter:
    """后台状态日志任务"""

    def __init__(self, engine: CoordinationEngine, interval_s: float) -> None:
        self._engine = engine
        self._interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def report_once(self) -> None:
        status = self._engine.get_system_status()
        await log.ainfo(
            "system_status",
            total_tasks=status.total_tasks,
            active_tasks=status.active_tasks,
            counts_by_state={k: v for k, v in status.counts_by_state.items() if v},
            placeholder_count=len(status.placeholders),
            edge_count=status.edge_count,
        )
        if status.stale_tasks:
            await log.awarning(
                "stale_tasks_detected",
                stale_count=len(status.stale_tasks),
                task_ids=[s.task_id for s in status.stale_tasks],
                threshold_s=status.stale_threshold_s,
            )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self.report_once()
            except Exception as e:
                log.error(
                    "status_report_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
