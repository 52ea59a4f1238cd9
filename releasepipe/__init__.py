"""releasepipe - 依赖离线化与多平台发布流水线"""

__version__ = "0.1.0"
