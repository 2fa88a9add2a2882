"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 PulseWatch 的所有配置项，支持从 .env 文件和环境变量读取。
涵盖数据库、Redis、探测地域、超时、批处理节奏、告警渠道凭据等配置。

Uses Pydantic Settings to manage all PulseWatch configuration items, read from .env files
and environment variables. Covers the database, Redis, vantage points, timeouts, sweep
batching, and credentials for the alert channels.
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_VANTAGE_POINTS = ["us-east", "us-west", "europe", "asia-pacific", "south-america"]


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names map to same-named environment variables (case insensitive),
    with .env file loading.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "pulsewatch"  # 数据库名称 (Database Name)
    postgres_user: str = "pulsewatch"  # 数据库用户名 (Database Username)
    postgres_password: str = "pulsewatch_dev_password"  # 数据库密码 (Database Password)
    database_url_override: str = ""  # 完整连接串，优先于 postgres_* (Full URL, takes precedence)

    # Redis 配置 (Redis Configuration)
    redis_host: str = "localhost"  # Redis 主机地址 (Redis Host)
    redis_port: int = 6379  # Redis 端口号 (Redis Port)
    expiring_store_backend: str = "memory"  # 过期键存储后端：memory/redis (Expiring Store Backend)

    # 探测配置 (Probe Configuration)
    vantage_points: list[str] = DEFAULT_VANTAGE_POINTS  # 探测地域列表 (Vantage Points)
    probe_timeout: float = 15.0  # 单轮共识探测的共享截止时间（秒） (Shared Probe Deadline in Seconds)
    consensus_concurrency: int = 10  # 一次共识扫描并发探测的目标数 (Targets Evaluated Concurrently)
    user_agent_product: str = "PulseWatch/1.0"  # 探测 User-Agent 前缀 (Probe User-Agent Product)

    # 扫描节奏配置 (Sweep Pacing Configuration)
    sweep_batch_size: int = 5  # 每批处理的目标数 (Targets Per Batch)
    sweep_batch_pause: float = 1.0  # 批次间停顿（秒） (Pause Between Batches in Seconds)
    sweep_loops_enabled: bool = False  # 是否在应用内启动后台扫描循环 (Run Sweep Loops In-process)
    consensus_sweep_interval: int = 300  # 共识扫描间隔（秒） (Consensus Sweep Interval)
    heartbeat_sweep_interval: int = 60  # 心跳扫描间隔（秒） (Heartbeat Sweep Interval)
    sla_sweep_interval: int = 3600  # SLA 违约扫描间隔（秒） (SLA Breach Sweep Interval)
    sla_sweep_limit: int = 100  # 单次 SLA 扫描最多检查的目标数 (Max Targets Per SLA Sweep)
    sla_alert_suppression_hours: int = 24  # SLA 违约告警抑制窗口（小时） (SLA Alert Suppression Window)

    # 告警分发配置 (Notification Fan-out Configuration)
    channel_timeout: float = 10.0  # 单渠道发送超时（秒） (Per-channel Send Timeout)
    test_notification_cooldown_minutes: int = 60  # 测试通知冷却时间（分钟） (Test Notification Cool-down)

    # 诊断配置 (Diagnostics Configuration)
    diagnostics_enabled: bool = True  # 故障时是否采集网络诊断 (Collect Diagnostics on Incidents)
    diagnostics_per_incident: int = 2  # 每个故障最多诊断的地域数 (Vantage Points Diagnosed Per Incident)
    diagnostics_concurrency: int = 4  # 全局并发诊断任务数 (Concurrent Diagnostic Tasks)
    diagnostics_timeout: float = 60.0  # 单次诊断总截止时间（秒） (Overall Diagnostic Deadline)
    traceroute_timeout: float = 30.0  # 路由追踪超时（秒） (Traceroute Timeout)
    tls_cache_ttl: int = 3600  # TLS 证书结果缓存时间（秒） (TLS Result Cache TTL)
    dns_over_https_url: str = "https://dns.google/resolve"  # DoH 解析接口 (DNS-over-HTTPS Endpoint)
    geo_lookup_url: str = "https://ipapi.co/{ip}/json/"  # IP 地理信息接口 (Geo Lookup Endpoint)

    # 邮件配置 (SMTP Configuration)
    smtp_host: str = ""  # SMTP 主机 (SMTP Host)
    smtp_port: int = 587  # SMTP 端口 (SMTP Port)
    smtp_username: str = ""  # SMTP 用户名 (SMTP Username)
    smtp_password: str = ""  # SMTP 密码 (SMTP Password)
    smtp_use_ssl: bool = False  # 是否使用 SSL 直连 (Implicit TLS)
    smtp_from: str = "alerts@pulsewatch.local"  # 发件人地址 (Sender Address)

    # 短信配置 (Twilio SMS Configuration)
    twilio_account_sid: str = ""  # Twilio 账号 SID (Twilio Account SID)
    twilio_auth_token: str = ""  # Twilio 认证令牌 (Twilio Auth Token)
    twilio_from_number: str = ""  # 短信发送号码 (Sender Phone Number)
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"  # Twilio API 基础 URL (Twilio API Base URL)

    # 对外地址 (Public Addresses)
    public_base_url: str = "http://localhost:8000"  # 心跳说明中使用的对外 URL (Public URL Used in Heartbeat Instructions)

    @property
    def database_url(self) -> str:
        """
        构造异步数据库连接 URL (Build Async Database Connection URL)

        设置了 database_url_override 时直接使用，否则拼接 asyncpg 连接串。
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """构造 Redis 连接 URL (Build Redis Connection URL)"""
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if not settings.vantage_points:
    settings.vantage_points = list(DEFAULT_VANTAGE_POINTS)
    logger.warning(
        "VANTAGE_POINTS 为空，已回退到默认地域列表 | "
        "VANTAGE_POINTS is empty, falling back to the default vantage points"
    )
