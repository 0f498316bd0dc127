"""CLI 入口模块 -- python -m haulflow.core <command>

支持的命令：
  rebuild-fill-levels [--dry-run]  从 fill_history 重建目的容器装载量
  load-catalog <file.json>         装载容器/取货点/承运箱目录
"""

import asyncio
import sys

from .config import get_db_path

_USAGE = """用法: python -m haulflow.core <command>
命令:
  rebuild-fill-levels [--dry-run]  从 fill_history 重建目的容器装载量
  load-catalog <file.json>         装载容器/取货点/承运箱目录"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "rebuild-fill-levels":
        asyncio.run(rebuild_fill_levels(dry_run="--dry-run" in sys.argv[2:]))
    elif command == "load-catalog":
        if len(sys.argv) < 3:
            print("用法: python -m haulflow.core load-catalog <file.json>")
            sys.exit(1)
        asyncio.run(load_catalog(sys.argv[2]))
    else:
        print(f"未知命令: {command}")
        print("可用命令: rebuild-fill-levels, load-catalog")
        sys.exit(1)


async def rebuild_fill_levels(dry_run: bool = False) -> None:
    """执行装载量重建"""
    from .projection import rebuild_fill_levels as rebuild
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始重建装载量..." if not dry_run else "检查装载量偏差（不写回）...")

    store_group = await create_store_group(db_path)

    try:
        report = await rebuild(store_group, apply=not dry_run)
        for drift in report.drifts:
            print(
                f"  {drift.container_id}: {drift.cached_amount} -> {drift.ledger_amount}"
            )
        for drift in report.skipped:
            print(f"  {drift.container_id}: 流水合计 {drift.ledger_amount} 越界，已跳过")
        print(
            f"完成，检查 {report.container_count} 个容器，"
            f"偏差 {len(report.drifts)} 个，跳过 {len(report.skipped)} 个"
        )
    finally:
        await store_group.close()


async def load_catalog(path: str) -> None:
    """执行目录装载"""
    from .catalog import load_catalog as load
    from .catalog import read_catalog
    from .store import create_store_group

    catalog = read_catalog(path)
    store_group = await create_store_group(get_db_path())

    try:
        counts = await load(store_group, catalog)
        print(
            f"装载完成: 来源容器 {counts.source_containers}，"
            f"目的容器 {counts.destination_containers}，"
            f"取货点 {counts.stands}，承运箱 {counts.boxes}"
        )
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
