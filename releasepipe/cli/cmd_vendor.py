"""CLI — 依赖离线化命令"""

from __future__ import annotations

import click

from releasepipe.cli import _service, config_option


def register(group: click.Group) -> None:
    group.add_command(vendor)
    group.add_command(verify)
    group.add_command(manifest)


@click.command()
@config_option
def vendor(config: str) -> None:
    """解析依赖图并写入本地离线存储"""
    report = _service(config).vendor()
    snap = report.snapshot
    click.echo(f"{snap.project}@{snap.project_version}: {len(snap.refs)} 个依赖")
    for label, items in (
        ("新增", report.added),
        ("替换", report.replaced),
        ("清理", report.removed),
        ("受影响", report.invalidated),
    ):
        if items:
            click.echo(f"  {label}: {', '.join(items)}")
    if report.lock_updated:
        click.echo("  锁文件已更新")


@click.command()
@config_option
def verify(config: str) -> None:
    """重新校验本地存储中全部依赖的源码树摘要"""
    snapshot = _service(config).verify()
    click.echo(f"校验通过: {len(snapshot.refs)} 个依赖")


@click.command()
@config_option
@click.option(
    "--format", "fmt", type=click.Choice(["yaml", "text"]), default="yaml",
    show_default=True, help="输出格式",
)
def manifest(config: str, fmt: str) -> None:
    """输出离线依赖清单"""
    m = _service(config).manifest()
    click.echo(m.render() if fmt == "yaml" else m.render_text(), nl=False)
