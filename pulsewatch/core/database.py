"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式创建数据库引擎和会话工厂，为目标存储、探测记录、故障和通知日志提供持久化。

Creates the database engine and session factory on SQLAlchemy 2.0 async mode, providing
persistence for targets, probe outcomes, incidents and notification logs.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from pulsewatch.core.config import settings

# 创建异步数据库引擎 (Create Async Database Engine)
engine = create_async_engine(
    settings.database_url,
    echo=False  # 关闭 SQL 日志输出 (Disable SQL logging)
)

# 创建异步会话工厂，提交后不过期对象 (Async session factory, objects survive commit)
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """ORM 模型基类 (ORM Model Base Class)"""
    pass


async def get_db() -> AsyncSession:
    """
    FastAPI 依赖项：获取数据库会话 (FastAPI Dependency: Get Database Session)

    Yields:
        AsyncSession: 异步数据库会话实例 (Async database session instance)
    """
    async with async_session() as session:
        yield session
