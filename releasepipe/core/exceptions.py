"""统一异常体系

所有业务异常继承 ReleasePipeError，替代散落的 ValueError / RuntimeError。
CLI 层据 exit_code 决定进程退出码:

  0 = 全部成功
  1 = 校验错误（版本号非法、平台列表为空等）/ 依赖解析错误 / 配置错误
  2 = 部分平台构建失败（IncompleteRelease）
  3 = 发布冲突（ReleaseImmutabilityViolation）

所有对用户可见的错误消息都必须点名出错实体（依赖 name@version、平台标识或版本标签）。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from releasepipe.core.models import Artifact


class ReleasePipeError(Exception):
    """流水线基础异常"""

    code: str = "UNKNOWN"
    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ReleasePipeError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


# =========================================================================
# 校验错误 — 派发任何构建前即失败，无副作用
# =========================================================================


class ValidationError(ReleasePipeError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class InvalidVersionTag(ValidationError):
    """版本标签不符合 v<major>.<minor>.<patch>[-<prerelease>] 语法"""

    code = "INVALID_VERSION_TAG"

    def __init__(self, tag: str) -> None:
        super().__init__(
            f"版本标签非法: '{tag}'（应为 v<major>.<minor>.<patch>[-<prerelease>]）",
        )
        self.tag = tag


class EmptyPlatformList(ValidationError):
    """发布请求未指定任何目标平台"""

    code = "EMPTY_PLATFORM_LIST"

    def __init__(self, tag: str = "") -> None:
        suffix = f" (tag={tag})" if tag else ""
        super().__init__(f"目标平台列表为空{suffix}")
        self.tag = tag


class VersionMismatch(ValidationError):
    """版本标签与项目声明版本不一致（仅报告，不自动纠正）"""

    code = "VERSION_MISMATCH"

    def __init__(self, tag: str, project_version: str) -> None:
        super().__init__(
            f"版本标签 {tag} 与项目声明版本 {project_version} 不一致",
        )
        self.tag = tag
        self.project_version = project_version


class UnknownPlatform(ValidationError):
    """请求了项目未配置的目标平台"""

    code = "UNKNOWN_PLATFORM"

    def __init__(self, platforms: list[str], available: list[str]) -> None:
        super().__init__(
            f"未配置的目标平台: {', '.join(platforms)}（可用: {', '.join(available)}）",
            details=list(platforms),
        )
        self.platforms = platforms


# =========================================================================
# 依赖解析错误 — 致命，任何构建开始前中止
# =========================================================================


class ResolutionError(ReleasePipeError):
    """依赖解析或离线化失败"""

    code = "RESOLUTION_ERROR"


class UnresolvableVersion(ResolutionError):
    """没有任何版本能同时满足全部约束"""

    code = "UNRESOLVABLE_VERSION"

    def __init__(self, name: str, reason: str, constraints: list[str] | None = None) -> None:
        detail = f" 约束: {'; '.join(constraints)}" if constraints else ""
        super().__init__(f"无法解析依赖 {name}: {reason}.{detail}")
        self.name = name
        self.constraints = constraints or []


class ChecksumMismatch(ResolutionError):
    """源码树校验和与期望值不符 — 视为安全失败，绝不静默接受"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, name: str, version: str, expected: str, actual: str) -> None:
        super().__init__(
            f"校验和不匹配 {name}@{version}: 期望 {expected}, 实际 {actual}",
        )
        self.name = name
        self.version = version
        self.expected = expected
        self.actual = actual


class PartialGraph(ResolutionError):
    """传递依赖自身的清单无法读取"""

    code = "PARTIAL_GRAPH"

    def __init__(self, name: str, version: str, reason: str) -> None:
        super().__init__(f"无法读取依赖清单 {name}@{version}: {reason}")
        self.name = name
        self.version = version


class InconsistentSnapshot(ResolutionError):
    """快照中列出的依赖在本地存储中没有对应源码树"""

    code = "INCONSISTENT_SNAPSHOT"

    def __init__(self, name: str, version: str, path: str) -> None:
        super().__init__(f"快照不一致: {name}@{version} 的源码树不存在 ({path})")
        self.name = name
        self.version = version


# =========================================================================
# 执行 / 构建错误 — 按平台隔离，不中止兄弟任务
# =========================================================================


class ExecutionError(ReleasePipeError):
    """子进程命令执行失败"""

    code = "EXECUTION_ERROR"


class BuildError(ReleasePipeError):
    """单个平台构建失败"""

    code = "BUILD_ERROR"

    def __init__(self, platform: str, reason: str) -> None:
        super().__init__(f"[{platform}] {reason}")
        self.platform = platform
        self.reason = reason


class ToolchainMissing(BuildError):
    """目标平台所需的编译工具链不存在"""

    code = "TOOLCHAIN_MISSING"

    def __init__(self, platform: str, toolchain: str) -> None:
        super().__init__(platform, f"工具链缺失: {toolchain}")
        self.toolchain = toolchain


class MissingBuildOutput(BuildError):
    """构建产物或声明的辅助文件缺失"""

    code = "MISSING_BUILD_OUTPUT"


# =========================================================================
# 聚合 / 发布错误
# =========================================================================


class IncompleteRelease(ReleasePipeError):
    """存在失败的平台构建，整个发布请求不予发布"""

    code = "INCOMPLETE_RELEASE"
    exit_code = 2

    def __init__(
        self,
        tag: str,
        failures: dict[str, str],
        completed: list[Artifact] | None = None,
    ) -> None:
        listed = "; ".join(f"{p}: {r}" for p, r in sorted(failures.items()))
        super().__init__(f"发布不完整 {tag}: {len(failures)} 个平台失败 ({listed})")
        self.tag = tag
        self.failures = dict(failures)
        self.completed = list(completed or [])

    @property
    def failed_platforms(self) -> list[str]:
        return sorted(self.failures)


class ReleaseCancelled(IncompleteRelease):
    """发布请求被取消，已开始的任务运行完毕但结果不发布"""

    code = "RELEASE_CANCELLED"


class ReleaseImmutabilityViolation(ReleasePipeError):
    """试图以不同内容重新发布已发布的版本标签"""

    code = "RELEASE_IMMUTABILITY_VIOLATION"
    exit_code = 3

    def __init__(self, tag: str, differences: list[str]) -> None:
        super().__init__(
            f"版本 {tag} 已发布且内容不同，拒绝覆盖: {'; '.join(differences)}",
        )
        self.tag = tag
        self.differences = differences
