"""CLI 入口模块 -- python -m taskmesh.core <command>

支持的命令：
  status             输出系统状态汇总（含停滞任务）
  chain <task_id>    输出任务的完整依赖链
  events <task_id>   输出任务的事件历史
"""

import asyncio
import sys

from .config import get_db_path, load_engine_config

USAGE = """用法: python -m taskmesh.core <command>
命令:
  status             输出系统状态汇总（含停滞任务）
  chain <task_id>    输出任务的完整依赖链
  events <task_id>   输出任务的事件历史"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口

    Returns:
        进程退出码
    """
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        return 1

    command = args[0]

    if command == "status":
        return asyncio.run(show_status())
    if command in ("chain", "events"):
        if len(args) < 2:
            print(f"缺少参数: {command} <task_id>")
            return 1
        if command == "chain":
            return asyncio.run(show_chain(args[1]))
        return asyncio.run(show_events(args[1]))

    print(f"未知命令: {command}")
    print("可用命令: status, chain, events")
    return 1


async def _load_engine():
    """读取数据库快照，构建只读引擎（不挂持久化 hook）"""
    from .engine import CoordinationEngine
    from .recovery import restore_from_store
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    engine = CoordinationEngine(config=load_engine_config())
    await restore_from_store(engine, store_group.task_store)
    await engine.drain()
    return engine, store_group


async def show_status() -> int:
    engine, store_group = await _load_engine()
    try:
        status = engine.get_system_status()
        print(status.model_dump_json(indent=2))
        return 0
    finally:
        await store_group.conn.close()


async def show_chain(task_id: str) -> int:
    from .errors import TaskNotFoundError

    engine, store_group = await _load_engine()
    try:
        try:
            chain = engine.get_dependency_chain(task_id)
        except TaskNotFoundError as e:
            print(str(e))
            return 1
        print(chain.model_dump_json(indent=2))
        return 0
    finally:
        await store_group.conn.close()


async def show_events(task_id: str) -> int:
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        events = await store_group.event_store.get_events_for_task(task_id)
        if not events:
            print(f"任务 {task_id} 没有事件记录")
            return 1
        for event in events:
            print(event.model_dump_json())
        return 0
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    sys.exit(main())
