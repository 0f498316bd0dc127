"""SQLite 列值编解码

datetime/date 以 ISO 8601 字符串存储，bool 以 0/1 存储，dict 以 JSON 文本存储。
读取时交给 pydantic 的 model_validate 做类型还原。
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any

import aiosqlite


def to_db(value: Any) -> Any:
    """Python 值 -> SQLite 列值"""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return value


def row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """按列名取值，转换为普通 dict"""
    return {key: row[key] for key in row.keys()}


def insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
