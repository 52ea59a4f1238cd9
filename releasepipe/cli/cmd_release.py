"""CLI — 构建计划与发布命令"""

from __future__ import annotations

import click

from releasepipe.cli import _service, config_option
from releasepipe.core.plan import render_plan
from releasepipe.utils.yaml_io import dump_yaml


def register(group: click.Group) -> None:
    group.add_command(plan)
    group.add_command(release)
    group.add_command(source_archive)
    group.add_command(releases)


def _request_options(func):  # noqa: ANN001, ANN202
    func = click.option("--output-root", default="", help="构建产物输出根目录")(func)
    func = click.option("--platform", "-p", multiple=True, help="目标平台（可多次指定，默认全部）")(func)
    func = click.option("--version", "tag", default="", help="版本标签，默认 v<项目版本>")(func)
    return config_option(func)


@click.command()
@_request_options
def plan(config: str, tag: str, platform: tuple[str, ...], output_root: str) -> None:
    """编译并输出构建计划（不派发构建）"""
    svc = _service(config)
    request = svc.make_request(tag, platform, output_root)
    click.echo(dump_yaml(render_plan(svc.plan(request))), nl=False)


@click.command()
@_request_options
@click.option("--publish", is_flag=True, default=False, help="执行构建并发布；不指定时只输出计划")
def release(
    config: str, tag: str, platform: tuple[str, ...], output_root: str, publish: bool,
) -> None:
    """解析依赖、构建全部目标平台并发布"""
    svc = _service(config)
    request = svc.make_request(tag, platform, output_root)
    report = svc.release(request, publish=publish)
    if report.dry_run:
        click.echo(dump_yaml(render_plan(report.plan)), nl=False)
        return
    click.echo(report.bundle.checksum_index, nl=False)
    click.echo(f"{report.published.status}: {report.published.tag} -> {report.published.location}")


@click.command(name="source-archive")
@config_option
@click.option("--output-dir", default="", help="归档输出目录，默认 output_root")
def source_archive(config: str, output_dir: str) -> None:
    """生成包含全部离线依赖的源码归档"""
    artifact = _service(config).source_archive(output_dir)
    click.echo(f"{artifact.checksum}  {artifact.archive_path}")


@click.command()
@config_option
def releases(config: str) -> None:
    """列出已发布版本"""
    records = _service(config).list_releases()
    if not records:
        click.echo("没有已发布的版本。")
        return
    for r in records:
        platforms = ", ".join(sorted(r.get("artifacts") or {}))
        click.echo(f"  {r.get('tag', ''):16s} {str(r.get('index_digest', ''))[:12]}  [{platforms}]")
