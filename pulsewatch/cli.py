"""
PulseWatch 命令行入口模块。

提供 CLI 命令：sweep（执行一轮扫描，供 cron 等外部调度器调用）、init-db（建表）和 serve（启动 API 服务）。
"""
import asyncio
import logging
import sys

import click

from pulsewatch import __version__


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
def cli(verbose):
    """PulseWatch - 多地域可用性监控。"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def _run_sweep(name: str):
    from pulsewatch.core.database import engine
    from pulsewatch.core.redis import close_redis
    from pulsewatch.services.diagnostics import diagnostics_scheduler
    from pulsewatch.tasks.consensus_sweep import run_consensus_sweep
    from pulsewatch.tasks.heartbeat_sweep import run_heartbeat_sweep
    from pulsewatch.tasks.sla_sweep import run_sla_sweep

    runners = {
        "consensus": run_consensus_sweep,
        "heartbeats": run_heartbeat_sweep,
        "sla": run_sla_sweep,
    }
    try:
        summary = await runners[name]()
        # 进程退出前等待本轮开启的故障诊断完成
        await diagnostics_scheduler.drain()
        return summary
    finally:
        await close_redis()
        await engine.dispose()


@cli.command()
@click.argument("name", type=click.Choice(["consensus", "heartbeats", "sla"]))
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
def sweep(name, as_json):
    """执行一轮扫描：consensus / heartbeats / sla。"""
    try:
        summary = asyncio.run(_run_sweep(name))
    except Exception as e:
        logging.getLogger("pulsewatch").exception("Sweep %s failed", name)
        click.echo(f"❌ Sweep {name} failed: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(summary.model_dump_json(indent=2))
        return
    click.echo(f"Sweep {summary.sweep}: {summary.total} targets")
    for status, count in sorted(summary.counts.items()):
        click.echo(f"   {status}: {count}")
    if summary.errors:
        sys.exit(2)


@cli.command("init-db")
def init_db():
    """创建数据库表。"""
    from pulsewatch.core.database import Base, engine
    import pulsewatch.models  # noqa: F401

    async def create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(create())
    click.echo("✅ Tables created")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
def serve(host, port):
    """启动 API 服务。"""
    import uvicorn

    uvicorn.run("pulsewatch.main:app", host=host, port=port)


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
