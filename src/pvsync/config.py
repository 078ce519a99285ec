from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


@dataclass(frozen=True)
class AppConfig:
    config_dir: Path = Path(os.getenv("PVSYNC_CONFIG_DIR", "~/.volsync")).expanduser()
    kubeconfig_path: str | None = os.getenv("KUBECONFIG") or None
    poll_interval_seconds: float = float(os.getenv("PVSYNC_POLL_INTERVAL_SECONDS", "5"))
    destination_timeout_seconds: float = float(os.getenv("PVSYNC_DESTINATION_TIMEOUT_SECONDS", "120"))
    source_timeout_seconds: float = float(os.getenv("PVSYNC_SOURCE_TIMEOUT_SECONDS", "120"))
    log_level: str = os.getenv("PVSYNC_LOG_LEVEL", "info")
    log_format: str = os.getenv("PVSYNC_LOG_FORMAT", "console")


def ensure_directories(config: AppConfig) -> None:
    config.config_dir.mkdir(parents=True, exist_ok=True)
