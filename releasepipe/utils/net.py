"""依赖下载地址

锁文件中 source=url 的条目用模板地址描述源码归档，可含 {name} 与 {version}
占位符，例如 https://static.crates.io/crates/{name}/{name}-{version}.crate
"""

from __future__ import annotations

from urllib.parse import urlparse

from releasepipe.core.exceptions import ValidationError

DOWNLOAD_SCHEMES = frozenset(("http", "https"))


def expand_source_url(template: str, name: str, version: str) -> str:
    """展开锁文件地址模板中的占位符"""
    return template.replace("{name}", name).replace("{version}", version)


def check_source_url(url: str, package: str = "") -> str:
    """锁文件下载地址只能走 http/https 且必须带主机名，返回原 url"""
    parsed = urlparse(url)
    owner = f"依赖 {package} 的" if package else ""
    if parsed.scheme not in DOWNLOAD_SCHEMES:
        raise ValidationError(
            f"{owner}下载地址使用了不支持的协议 '{parsed.scheme}'（只允许 http/https）: {url}",
        )
    if not parsed.netloc:
        raise ValidationError(f"{owner}下载地址缺少主机名: {url}")
    return url
