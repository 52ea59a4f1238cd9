"""集中配置管理

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 环境变量覆盖 + 编程式覆盖。

环境变量:
  RELEASEPIPE_VENDORED     1/true/yes/on 使用离线依赖模式，0/false/no/off 使用在线解析模式
  RELEASEPIPE_OUTPUT_ROOT  覆盖构建产物输出根目录
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field

from releasepipe.core.exceptions import ConfigError
from releasepipe.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "releasepipe.yml"

ENV_VENDORED = "RELEASEPIPE_VENDORED"
ENV_OUTPUT_ROOT = "RELEASEPIPE_OUTPUT_ROOT"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(value: str, *, name: str = "") -> bool:
    """解析布尔型环境变量，非法取值抛 ConfigError"""
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError(f"无法解析布尔值 {name}={value!r}")


@dataclass
class Config:
    """流水线全局配置"""

    # 项目描述与锁文件
    project_file: str = "release/project.yml"
    lock_file: str = "release/lock.yml"

    # 目录
    source_dir: str = "."
    source_index: str = "vendor-index"
    vendor_dir: str = "vendor"
    output_root: str = "dist"
    work_root: str = "build/work"
    publish_root: str = "releases"

    # 执行
    max_workers: int = 4
    build_timeout: int = 3600
    keep_workdirs: bool = False

    # 依赖模式: True=离线 vendor 模式, False=在线解析模式
    vendored: bool = True

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path} - {e}") from e
        cfg.extra = extra
        return cfg

    def apply_env(self, environ: Mapping[str, str] | None = None) -> Config:
        """应用环境变量覆盖，返回自身便于链式调用"""
        env = os.environ if environ is None else environ
        if env.get(ENV_VENDORED, "").strip():
            self.vendored = parse_bool(env[ENV_VENDORED], name=ENV_VENDORED)
        if env.get(ENV_OUTPUT_ROOT, "").strip():
            self.output_root = env[ENV_OUTPUT_ROOT].strip()
        return self

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config().apply_env()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置，并应用环境变量覆盖"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path).apply_env()
    logger.info(
        "配置已加载: %s (vendored=%s, output_root=%s)",
        path, _current.vendored, _current.output_root,
    )
    return _current


def reset_config() -> None:
    """清除全局配置（测试用）"""
    global _current  # noqa: PLW0603
    _current = None
