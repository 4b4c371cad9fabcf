"""Settings and static service limits for Scholar."""

from pathlib import Path

CONFIG_ROOT = Path(__file__).resolve().parent
SERVICE_LIMITS_PATH = CONFIG_ROOT / "service_limits.yaml"

__all__ = ["CONFIG_ROOT", "SERVICE_LIMITS_PATH"]
