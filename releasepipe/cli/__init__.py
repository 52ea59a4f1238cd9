"""releasepipe 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。

退出码:
  0 成功 / 1 校验、解析或配置错误 / 2 发布不完整 / 3 发布冲突
"""

import os
from pathlib import Path
from typing import Any

import click

from releasepipe import __version__
from releasepipe.core.config import DEFAULT_CONFIG_FILE, init_config
from releasepipe.core.exceptions import ReleasePipeError
from releasepipe.utils.logger import setup_logging


class _PipelineGroup(click.Group):
    """把 ReleasePipeError 转换为单行错误信息与对应退出码"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except ReleasePipeError as e:
            click.echo(f"错误 [{e.code}]: {e}", err=True)
            ctx.exit(e.exit_code)


def _service(config: str) -> Any:
    """按配置文件构造发布服务，相对路径以配置文件所在目录为基准"""
    from releasepipe.services.release_service import ReleaseService
    path = Path(config)
    cfg = init_config(str(path))
    base_dir = path.resolve().parent if path.exists() else Path.cwd()
    return ReleaseService(cfg, base_dir=base_dir)


config_option = click.option(
    "--config", "-c", default=DEFAULT_CONFIG_FILE, show_default=True, help="配置文件路径",
)


@click.group(cls=_PipelineGroup)
@click.version_option(version=__version__)
def main() -> None:
    """releasepipe - 离线依赖与多平台发布流水线"""
    setup_logging(
        level=os.getenv("RELEASEPIPE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("RELEASEPIPE_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from releasepipe.cli.cmd_vendor import register as _reg_vendor  # noqa: E402
from releasepipe.cli.cmd_release import register as _reg_release  # noqa: E402

_reg_vendor(main)
_reg_release(main)
