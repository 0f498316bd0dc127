"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id                  TEXT PRIMARY KEY,
    workflow                 TEXT NOT NULL,
    task_type                TEXT NOT NULL DEFAULT 'MANUAL',
    status                   TEXT NOT NULL,
    title                    TEXT NOT NULL DEFAULT '',
    description              TEXT,
    priority                 TEXT NOT NULL DEFAULT 'normal',
    material_type            TEXT NOT NULL,
    planned_quantity         REAL,
    quantity_unit            TEXT NOT NULL DEFAULT 'kg',
    estimated_amount         REAL,
    actual_quantity          REAL,
    measured_weight          REAL,
    source_container_id      TEXT REFERENCES source_containers(container_id),
    destination_container_id TEXT REFERENCES destination_containers(container_id),
    stand_id                 TEXT REFERENCES stands(stand_id),
    box_id                   TEXT REFERENCES boxes(box_id),
    scheduled_for            TEXT,
    dedup_key                TEXT,
    assigned_to              TEXT,
    claimed_by_user_id       TEXT,
    claimed_at               TEXT,
    handover_at              TEXT,
    assigned_at              TEXT,
    accepted_at              TEXT,
    picked_up_at             TEXT,
    in_transit_at            TEXT,
    dropped_off_at           TEXT,
    taken_over_at            TEXT,
    weighed_at               TEXT,
    delivered_at             TEXT,
    completed_at             TEXT,
    disposed_at              TEXT,
    cancelled_at             TEXT,
    cancellation_reason      TEXT,
    created_by               TEXT,
    created_at               TEXT NOT NULL,
    updated_at               TEXT NOT NULL
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_type_status ON tasks(task_type, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
    # 去重键唯一约束（仅对非 NULL 值生效），保证每个取货点每天至多一个每日任务
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_dedup_key "
        "ON tasks(dedup_key) WHERE dedup_key IS NOT NULL;"
    ),
]

_SOURCE_CONTAINERS_DDL = """
CREATE TABLE IF NOT EXISTS source_containers (
    container_id     TEXT PRIMARY KEY,
    label            TEXT NOT NULL DEFAULT '',
    location         TEXT NOT NULL DEFAULT '',
    material_type    TEXT NOT NULL,
    last_emptied_at  TEXT,
    is_active        INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_DESTINATION_CONTAINERS_DDL = """
CREATE TABLE IF NOT EXISTS destination_containers (
    container_id     TEXT PRIMARY KEY,
    location         TEXT NOT NULL DEFAULT '',
    material_type    TEXT NOT NULL,
    current_amount   REAL NOT NULL DEFAULT 0,
    max_capacity     REAL NOT NULL,
    quantity_unit    TEXT NOT NULL DEFAULT 'kg',
    last_emptied_at  TEXT,
    is_active        INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,

    CHECK (current_amount >= 0 AND current_amount <= max_capacity)
);
"""

_STANDS_DDL = """
CREATE TABLE IF NOT EXISTS stands (
    stand_id                      TEXT PRIMARY KEY,
    identifier                    TEXT NOT NULL DEFAULT '',
    material_type                 TEXT NOT NULL,
    daily_full                    INTEGER NOT NULL DEFAULT 0,
    is_active                     INTEGER NOT NULL DEFAULT 1,
    source_container_id           TEXT REFERENCES source_containers(container_id),
    destination_container_id      TEXT REFERENCES destination_containers(container_id),
    last_daily_task_generated_at  TEXT,
    created_at                    TEXT NOT NULL,
    updated_at                    TEXT NOT NULL
);
"""

_BOXES_DDL = """
CREATE TABLE IF NOT EXISTS boxes (
    box_id           TEXT PRIMARY KEY,
    label            TEXT NOT NULL DEFAULT '',
    status           TEXT NOT NULL DEFAULT 'AVAILABLE',
    current_task_id  TEXT,
    updated_at       TEXT NOT NULL
);
"""

# fill_history 表 append-only
_FILL_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS fill_history (
    entry_id      TEXT PRIMARY KEY,
    container_id  TEXT NOT NULL,
    amount_added  REAL NOT NULL,
    unit          TEXT NOT NULL DEFAULT 'kg',
    task_id       TEXT,
    is_reset      INTEGER NOT NULL DEFAULT 0,
    recorded_by   TEXT NOT NULL,
    created_at    TEXT NOT NULL,

    FOREIGN KEY (container_id) REFERENCES destination_containers(container_id),
    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

# activity_log 表 append-only
_ACTIVITY_LOG_DDL = """
CREATE TABLE IF NOT EXISTS activity_log (
    activity_id   TEXT PRIMARY KEY,
    type          TEXT NOT NULL,
    message       TEXT NOT NULL DEFAULT '',
    user_id       TEXT,
    task_id       TEXT,
    container_id  TEXT,
    metadata      TEXT NOT NULL DEFAULT '{}',
    created_at    TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_LEDGER_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_fill_history_container ON fill_history(container_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_activity_log_task ON activity_log(task_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_activity_log_type ON activity_log(type);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    conn.row_factory = aiosqlite.Row

    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表（被引用的表先建）
    for ddl in (
        _SOURCE_CONTAINERS_DDL,
        _DESTINATION_CONTAINERS_DDL,
        _STANDS_DDL,
        _BOXES_DDL,
        _TASKS_DDL,
        _FILL_HISTORY_DDL,
        _ACTIVITY_LOG_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _LEDGER_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
