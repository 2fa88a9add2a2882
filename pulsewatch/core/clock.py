"""
时间工具 (Time Helpers)

统一使用带时区的 UTC 时间；数据库可能返回不带时区的值（如 SQLite），比较前需补齐。
"""
from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """为不带时区的时间补上 UTC 时区，带时区的时间转换到 UTC。"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
