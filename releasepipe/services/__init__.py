"""服务层 — 串联各流水线阶段"""

from releasepipe.services.release_service import ReleaseReport, ReleaseService

__all__ = ["ReleaseService", "ReleaseReport"]
