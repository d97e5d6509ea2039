"""CoordinationEngine -- 任务依赖协调引擎

对外暴露注册、启动、完成、失败、强制完成以及查询操作。
依赖完成后通过 CompletionSignal 自动推进下游：
- 依赖全部 SUCCEEDED：BLOCKED -> RUNNING，PENDING -> READY
- 任一依赖 FAILED：PENDING/BLOCKED/READY -> BLOCKED_BY_FAILURE（沿下游传递）

传播在后台 asyncio.Task 中执行，drain() 等待所有传播结束。
"""

import asyncio
import functools
from collections.abc import Coroutine, Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from ..config import EngineConfig
from ..errors import (
    DependencyNotSatisfiedError,
    DuplicateRegistrationError,
    InvalidStateTransitionError,
    TaskNotFoundError,
)
from ..models import (
    PROPAGATABLE_STATES,
    SATISFIED_STATES,
    FAILURE_STATES,
    DependencyChain,
    EventType,
    ForceCompletedPayload,
    SignalResult,
    StaleTask,
    StateTransitionPayload,
    SystemStatus,
    Task,
    TaskEvent,
    TaskRegisteredPayload,
    TaskState,
    validate_transition,
)
from ..store.protocols import TaskNotifier, TaskPersister
from .graph import DependencyGraph
from .signal import CompletionSignal, failed, succeeded
from .task_store import TaskStore

log = structlog.get_logger()


class CoordinationEngine:
    """任务依赖协调引擎"""

    def __init__(
        self,
        notifier: TaskNotifier | None = None,
        persister: TaskPersister | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        """
        Args:
            notifier: 状态变更广播 hook（可选）
            persister: 状态变更持久化 hook（可选）
            config: 引擎配置，默认使用 EngineConfig()
        """
        self.config = config or EngineConfig()
        self.store = TaskStore(notifier=notifier, persister=persister)
        self.graph = DependencyGraph(self.store)
        self._signals: dict[str, CompletionSignal] = {}
        self._background: set[asyncio.Task] = set()

    # ============================================================
    # 注册
    # ============================================================

    async def register_task(
        self,
        task_id: str,
        dependencies: Iterable[str] = (),
        agent_id: str | None = None,
        payload: Any = None,
    ) -> Task:
        """注册任务及其依赖

        未注册的依赖会以占位任务的形式创建；已存在的占位任务会被就地补全。
        初始状态：任一依赖失败 -> BLOCKED_BY_FAILURE，
        依赖全部满足 -> READY，否则 PENDING。

        Args:
            task_id: 任务 ID
            dependencies: 依赖任务 ID（重复项会被去重）
            agent_id: 注册方 agent
            payload: 任务附加数据，原样保存，引擎不解释（None 视为 {}）

        Returns:
            注册后的任务快照

        Raises:
            DuplicateRegistrationError: 任务已正式注册
            CyclicDependencyError: 注册会形成环，不做任何修改
        """
        deps = list(dict.fromkeys(dependencies))

        async with self.graph.lock:
            existing = self.store.peek(task_id)
            if existing is not None and not existing.is_placeholder:
                raise DuplicateRegistrationError(task_id)
            replaced_placeholder = existing is not None

            await self.graph.add_edges(task_id, deps)

            if not replaced_placeholder:
                now = datetime.now(UTC)
                self.store.insert(
                    Task(
                        task_id=task_id,
                        is_placeholder=True,
                        created_at=now,
                        updated_at=now,
                    )
                )

            def fill(task: Task) -> TaskEvent:
                now = datetime.now(UTC)
                task.is_placeholder = False
                task.dependencies = deps
                task.agent_id = agent_id
                task.payload = {} if payload is None else payload
                task.registered_at = now

                failed_root = self._failed_dependency(deps)
                if failed_root is not None:
                    task.state = TaskState.BLOCKED_BY_FAILURE
                    task.blocked_by = failed_root
                elif self._pending_dependencies(deps):
                    task.state = TaskState.PENDING
                else:
                    task.state = TaskState.READY

                # 只订阅尚未解析的依赖信号，已解析的依赖已体现在初始状态中
                for dep_id in deps:
                    dep_signal = self._signal(dep_id)
                    if not dep_signal.resolved:
                        dep_signal.subscribe(
                            functools.partial(self._on_dependency_resolved, task_id, dep_id)
                        )

                return TaskEvent.build(
                    task_id,
                    EventType.TASK_REGISTERED,
                    TaskState.PENDING if replaced_placeholder else None,
                    task.state,
                    TaskRegisteredPayload(
                        dependencies=deps,
                        agent_id=agent_id,
                        replaced_placeholder=replaced_placeholder,
                    ).model_dump(),
                    ts=now,
                )

            snapshot, _ = await self.store.mutate(task_id, fill)

        log.info(
            "task_registered",
            task_id=task_id,
            state=snapshot.state.value,
            dependency_count=len(deps),
            replaced_placeholder=replaced_placeholder,
        )
        return self._with_dependents(snapshot)

    # ============================================================
    # 状态流转
    # ============================================================

    def can_task_start(self, task_id: str) -> bool:
        """任务的所有依赖是否都已 COMPLETED / FORCE_COMPLETED

        占位任务没有依赖，结果为 True；能否 start 另由注册状态决定。

        Raises:
            TaskNotFoundError: 任务不存在
        """
        task = self.store.peek(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return not self._pending_dependencies(task.dependencies)

    async def start_task(
        self,
        task_id: str,
        agent_id: str,
        require_ready: bool = False,
    ) -> Task:
        """请求启动任务

        依赖全部满足则进入 RUNNING；否则进入 BLOCKED 并记录请求的 agent，
        待依赖完成后由引擎自动推进到 RUNNING。

        Args:
            task_id: 任务 ID
            agent_id: 执行任务的 agent
            require_ready: 为 True 时依赖未满足直接报错，不进入 BLOCKED

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateTransitionError: 当前状态不允许启动
            DependencyNotSatisfiedError: require_ready=True 且依赖未满足
        """

        def start(task: Task) -> TaskEvent | None:
            if task.is_placeholder:
                raise InvalidStateTransitionError(
                    task_id,
                    task.state,
                    TaskState.RUNNING,
                    "task is a placeholder and has not been registered",
                )
            if task.state == TaskState.BLOCKED:
                if task.agent_id != agent_id:
                    raise InvalidStateTransitionError(
                        task_id,
                        task.state,
                        TaskState.RUNNING,
                        f"start already requested by agent {task.agent_id}",
                    )
            elif task.state not in (TaskState.PENDING, TaskState.READY):
                raise InvalidStateTransitionError(task_id, task.state, TaskState.RUNNING)

            pending = self._pending_dependencies(task.dependencies)
            if not pending:
                event = self._transition(
                    task, TaskState.RUNNING, reason="started", agent_id=agent_id
                )
                task.agent_id = agent_id
                task.start_requested_at = task.start_requested_at or event.ts
                task.started_at = event.ts
                return event

            if require_ready:
                raise DependencyNotSatisfiedError(task_id, pending)
            if task.state == TaskState.BLOCKED:
                # 同一 agent 重复请求
                return None

            event = self._transition(
                task, TaskState.BLOCKED, reason="waiting for dependencies", agent_id=agent_id
            )
            task.agent_id = agent_id
            task.start_requested_at = event.ts
            return event

        snapshot, event = await self.store.mutate(task_id, start)
        if event is not None:
            log.info(
                "task_start_requested",
                task_id=task_id,
                agent_id=agent_id,
                state=snapshot.state.value,
            )
        return self._with_dependents(snapshot)

    async def complete_task(self, task_id: str, result: Any = None) -> Task:
        """RUNNING -> COMPLETED，并以 SUCCEEDED 解析完成信号

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateTransitionError: 任务不在 RUNNING
        """

        def complete(task: Task) -> TaskEvent:
            self._require_registered(task, TaskState.COMPLETED)
            event = self._transition(task, TaskState.COMPLETED, reason="completed")
            task.result = result
            task.completed_at = event.ts
            return event

        snapshot, _ = await self.store.mutate(task_id, complete)
        log.info("task_completed", task_id=task_id, agent_id=snapshot.agent_id)

        self._signal(task_id).resolve(succeeded(snapshot.result))
        return self._with_dependents(snapshot)

    async def fail_task(self, task_id: str, error: Any = None) -> Task:
        """RUNNING -> FAILED，并以 FAILED 解析完成信号

        下游任务会被连带标记为 BLOCKED_BY_FAILURE。

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateTransitionError: 任务不在 RUNNING
        """
        if isinstance(error, BaseException):
            error = f"{type(error).__name__}: {error}"

        def fail(task: Task) -> TaskEvent:
            self._require_registered(task, TaskState.FAILED)
            event = self._transition(task, TaskState.FAILED, reason="failed")
            task.error = error
            task.completed_at = event.ts
            return event

        snapshot, _ = await self.store.mutate(task_id, fail)
        log.warning(
            "task_failed",
            task_id=task_id,
            agent_id=snapshot.agent_id,
            error=str(error),
        )

        self._signal(task_id).resolve(failed(snapshot.error))
        return self._with_dependents(snapshot)

    async def force_complete_task(
        self,
        task_id: str,
        result: Any = None,
        reason: str = "",
    ) -> Task:
        """人工强制完成任务，解除下游阻塞

        可作用于任意非终态（含占位任务与 BLOCKED_BY_FAILURE）。
        已经 FORCE_COMPLETED 的任务重复调用不做任何修改。

        Args:
            task_id: 任务 ID
            result: 写入的结果，默认 {"forced_complete": True, "timestamp": ...}
            reason: 操作原因，写入事件 payload

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateTransitionError: 任务已 COMPLETED 或 FAILED
        """

        def force(task: Task) -> TaskEvent | None:
            if task.state == TaskState.FORCE_COMPLETED:
                return None
            event = self._transition(
                task,
                TaskState.FORCE_COMPLETED,
                event_type=EventType.TASK_FORCE_COMPLETED,
                payload=ForceCompletedPayload(reason=reason).model_dump(),
            )
            if result is None:
                task.result = {"forced_complete": True, "timestamp": event.ts.isoformat()}
            else:
                task.result = result
            task.is_placeholder = False
            task.completed_at = event.ts
            return event

        current = self.store.peek(task_id)
        if current is not None and current.is_placeholder:
            # 占位任务可能正被注册补全，与注册在图锁上串行
            async with self.graph.lock:
                snapshot, event = await self.store.mutate(task_id, force)
        else:
            snapshot, event = await self.store.mutate(task_id, force)
        if event is None:
            log.info("task_force_complete_noop", task_id=task_id)
            return self._with_dependents(snapshot)

        log.warning(
            "task_force_completed",
            task_id=task_id,
            from_state=event.from_state.value if event.from_state else None,
            reason=reason,
        )

        self._signal(task_id).resolve(succeeded(snapshot.result))
        return self._with_dependents(snapshot)

    async def wait_for(self, task_id: str, timeout: float | None = None) -> SignalResult:
        """等待任务进入终态

        Raises:
            TaskNotFoundError: 任务不存在
            TimeoutError: 超时
        """
        if task_id not in self.store:
            raise TaskNotFoundError(task_id)
        signal = self._signal(task_id)
        if timeout is None:
            return await signal.wait()
        return await asyncio.wait_for(signal.wait(), timeout)

    # ============================================================
    # 查询
    # ============================================================

    def get_task_metadata(self, task_id: str) -> Task:
        """任务快照（含 dependents）

        Raises:
            TaskNotFoundError: 任务不存在
        """
        return self._with_dependents(self.store.get(task_id))

    def get_dependency_chain(self, task_id: str) -> DependencyChain:
        """
        Raises:
            TaskNotFoundError: 任务不存在
        """
        return self.graph.chain(task_id)

    def get_system_status(self, stale_threshold_s: float | None = None) -> SystemStatus:
        """系统状态汇总

        Args:
            stale_threshold_s: 停滞阈值（秒），默认取 config.stale_threshold_s

        Returns:
            各状态计数 + 停留在 BLOCKED / BLOCKED_BY_FAILURE 超过阈值的任务
        """
        threshold = (
            self.config.stale_threshold_s if stale_threshold_s is None else stale_threshold_s
        )
        now = datetime.now(UTC)
        counts = {state.value: 0 for state in TaskState}
        stale: list[StaleTask] = []
        placeholders: list[str] = []
        active = 0

        for task in self.store.tasks():
            counts[task.state.value] += 1
            if task.is_placeholder:
                placeholders.append(task.task_id)
            if task.state == TaskState.RUNNING:
                active += 1
            if task.state in (TaskState.BLOCKED, TaskState.BLOCKED_BY_FAILURE):
                age_s = (now - task.updated_at).total_seconds()
                if age_s >= threshold:
                    stale.append(
                        StaleTask(
                            task_id=task.task_id,
                            state=task.state,
                            agent_id=task.agent_id,
                            blocked_by=task.blocked_by,
                            since=task.updated_at,
                            age_s=age_s,
                        )
                    )

        stale.sort(key=lambda s: s.age_s, reverse=True)
        return SystemStatus(
            total_tasks=len(self.store),
            counts_by_state=counts,
            stale_tasks=stale,
            active_tasks=active,
            placeholders=sorted(placeholders),
            edge_count=self.graph.edge_count,
            side_channel_failures=dict(self.store.side_channel_failures),
            stale_threshold_s=threshold,
            timestamp=now,
        )

    # ============================================================
    # 启动恢复
    # ============================================================

    async def restore(self, tasks: Iterable[Task]) -> int:
        """从持久化快照恢复内存状态

        终态任务的信号直接解析；非终态任务重新订阅其依赖，
        依赖已解析的订阅会立即触发传播，补齐停机期间错过的推进。

        Returns:
            恢复的任务数
        """
        records = list(tasks)
        for task in records:
            self.store.insert(task.model_copy(update={"dependents": []}, deep=True))

        for task in records:
            for dep_id in task.dependencies:
                if dep_id not in self.store:
                    now = datetime.now(UTC)
                    self.store.insert(
                        Task(task_id=dep_id, is_placeholder=True, created_at=now, updated_at=now)
                    )
            self.graph.restore_edges(task.task_id, task.dependencies)

        for task in records:
            if task.state in SATISFIED_STATES:
                self._signal(task.task_id).resolve(succeeded(task.result))
            elif task.state == TaskState.FAILED:
                self._signal(task.task_id).resolve(failed(task.error))

        for task in records:
            if task.state == TaskState.BLOCKED_BY_FAILURE:
                # BLOCKED_BY_FAILURE 不解析信号，停机前未完成的连带阻塞在此补齐
                for dependent_id in self.graph.dependents_of(task.task_id):
                    self._spawn(
                        self._block_by_failure(
                            dependent_id, task.blocked_by or task.task_id, task.task_id
                        )
                    )
            if task.is_placeholder or task.state not in PROPAGATABLE_STATES:
                continue
            for dep_id in task.dependencies:
                self._signal(dep_id).subscribe(
                    functools.partial(self._on_dependency_resolved, task.task_id, dep_id)
                )

        log.info(
            "engine_restored",
            task_count=len(records),
            edge_count=self.graph.edge_count,
        )
        return len(records)

    async def drain(self) -> None:
        """等待所有后台传播结束"""
        while self._background:
            await asyncio.gather(*list(self._background))

    # ============================================================
    # 传播
    # ============================================================

    def _on_dependency_resolved(
        self,
        task_id: str,
        dependency_id: str,
        result: SignalResult,
    ) -> None:
        if result.succeeded:
            self._spawn(self._reevaluate(task_id, dependency_id))
        else:
            self._spawn(self._block_by_failure(task_id, dependency_id, dependency_id))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _reevaluate(self, task_id: str, dependency_id: str) -> None:
        """依赖成功后重新评估下游任务"""

        def promote(task: Task) -> TaskEvent | None:
            if task.state not in (TaskState.PENDING, TaskState.BLOCKED):
                return None
            if self._pending_dependencies(task.dependencies):
                return None
            if task.state == TaskState.BLOCKED:
                event = self._transition(
                    task,
                    TaskState.RUNNING,
                    reason="dependencies satisfied",
                    dependency_id=dependency_id,
                )
                task.started_at = event.ts
                return event
            return self._transition(
                task,
                TaskState.READY,
                reason="dependencies satisfied",
                dependency_id=dependency_id,
            )

        try:
            snapshot, event = await self.store.mutate(task_id, promote)
        except Exception as e:
            log.error(
                "dependency_reevaluation_failed",
                task_id=task_id,
                dependency_id=dependency_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        if event is not None:
            log.info(
                "task_unblocked",
                task_id=task_id,
                dependency_id=dependency_id,
                state=snapshot.state.value,
            )

    async def _block_by_failure(self, task_id: str, failed_id: str, via_id: str) -> None:
        """依赖失败后将下游标记为 BLOCKED_BY_FAILURE，并继续向下游传递

        Args:
            task_id: 被阻塞的任务
            failed_id: 最初失败的任务
            via_id: 直接导致本次阻塞的依赖
        """

        def block(task: Task) -> TaskEvent | None:
            if task.state not in PROPAGATABLE_STATES:
                return None
            event = self._transition(
                task,
                TaskState.BLOCKED_BY_FAILURE,
                reason=f"dependency {via_id} failed",
                dependency_id=via_id,
            )
            task.blocked_by = failed_id
            return event

        try:
            snapshot, event = await self.store.mutate(task_id, block)
        except Exception as e:
            log.error(
                "failure_propagation_failed",
                task_id=task_id,
                failed_task_id=failed_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        if event is None:
            return

        log.warning(
            "task_blocked_by_failure",
            task_id=task_id,
            failed_task_id=failed_id,
            via=via_id,
        )
        for dependent_id in self.graph.dependents_of(task_id):
            self._spawn(self._block_by_failure(dependent_id, failed_id, task_id))

    # ============================================================
    # 内部工具
    # ============================================================

    def _signal(self, task_id: str) -> CompletionSignal:
        signal = self._signals.get(task_id)
        if signal is None:
            signal = CompletionSignal(task_id)
            self._signals[task_id] = signal
        return signal

    def _pending_dependencies(self, deps: Iterable[str]) -> list[str]:
        pending = []
        for dep_id in deps:
            dep = self.store.peek(dep_id)
            if dep is None or dep.state not in SATISFIED_STATES:
                pending.append(dep_id)
        return pending

    def _failed_dependency(self, deps: Iterable[str]) -> str | None:
        """返回导致失败的根任务 ID（如有）"""
        for dep_id in deps:
            dep = self.store.peek(dep_id)
            if dep is not None and dep.state in FAILURE_STATES:
                return dep.blocked_by or dep.task_id
        return None

    def _require_registered(self, task: Task, to_state: TaskState) -> None:
        if task.is_placeholder:
            raise InvalidStateTransitionError(
                task.task_id,
                task.state,
                to_state,
                "task is a placeholder and has not been registered",
            )

    def _transition(
        self,
        task: Task,
        to_state: TaskState,
        *,
        reason: str = "",
        agent_id: str | None = None,
        dependency_id: str | None = None,
        event_type: EventType = EventType.STATE_TRANSITION,
        payload: dict[str, Any] | None = None,
    ) -> TaskEvent:
        """校验并应用状态流转，返回对应事件

        Raises:
            InvalidStateTransitionError: 流转不在 VALID_TRANSITIONS 中
        """
        if not validate_transition(task.state, to_state):
            raise InvalidStateTransitionError(task.task_id, task.state, to_state)

        if payload is None:
            payload = StateTransitionPayload(
                reason=reason,
                agent_id=agent_id or task.agent_id,
                dependency_id=dependency_id,
            ).model_dump()
        event = TaskEvent.build(task.task_id, event_type, task.state, to_state, payload)
        task.state = to_state
        return event

    def _with_dependents(self, snapshot: Task) -> Task:
        snapshot.dependents = self.graph.dependents_of(snapshot.task_id)
        return snapshot
