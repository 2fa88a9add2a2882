"""
核心模块包 (Core Module Package)

PulseWatch 的基础组件：配置管理、数据库连接、Redis、异常体系、过期键存储与目标锁。

Foundational components for PulseWatch: configuration, database connections, Redis,
the exception hierarchy, the expiring key store and per-target locks.
"""
