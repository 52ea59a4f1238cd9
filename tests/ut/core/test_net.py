"""锁文件下载地址测试"""

import pytest

from releasepipe.core.exceptions import ValidationError
from releasepipe.utils.net import check_source_url, expand_source_url


class TestSourceUrl:
    def test_expand_placeholders(self) -> None:
        template = "https://static.crates.io/crates/{name}/{name}-{version}.crate"
        assert expand_source_url(template, "serde", "1.0.200") == (
            "https://static.crates.io/crates/serde/serde-1.0.200.crate"
        )

    @pytest.mark.parametrize("url", ["http://mirror.local/serde.tar.gz", "https://static.crates.io/x"])
    def test_allowed(self, url: str) -> None:
        assert check_source_url(url) == url

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://evil.com/payload", "/local/path"])
    def test_rejected_scheme(self, url: str) -> None:
        with pytest.raises(ValidationError, match="不支持的协议"):
            check_source_url(url)

    def test_missing_host(self) -> None:
        with pytest.raises(ValidationError, match="缺少主机名"):
            check_source_url("https:///serde.tar.gz")

    def test_package_in_error(self) -> None:
        with pytest.raises(ValidationError, match="serde@1.0.0"):
            check_source_url("file:///x", "serde@1.0.0")
