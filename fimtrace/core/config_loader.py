"""
fimtrace - Configuration loader.

Loads config.yaml and resolves artifact paths relative to the monitored
directory.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from fimtrace.core.errors import ConfigError
from fimtrace.core.models import ChangeKind

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "config.yaml"


def _section(raw: dict, name: str, path: Path) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' in {path} must be a mapping")
    return section


def load_config(config_path: Optional[Path], watch_dir: Path) -> dict[str, Any]:
    """
    Load YAML config and resolve paths relative to watch_dir.

    Args:
        config_path: Path to config.yaml; None uses the packaged default.
        watch_dir: Monitored directory (already validated).

    Returns:
        Flat config dict with defaults applied.

    Raises:
        ConfigError: file missing, unreadable, or invalid values.
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH).resolve()
    if not path.is_file():
        raise ConfigError(f"Config not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config {path} must be a mapping")

    root = Path(watch_dir).resolve()

    def resolve(p: str) -> Path:
        path_obj = Path(p)
        return (root / path_obj).resolve() if not path_obj.is_absolute() else path_obj.resolve()

    try:
        monitoring = _section(raw, "monitoring", path)
        file_patterns = [str(p) for p in monitoring.get("file_patterns", ["*.txt"])]
        exclude_patterns = [str(p) for p in monitoring.get("exclude_patterns", []) or []]
        queue_size = int(monitoring.get("queue_size", 10000))

        paths_raw = _section(raw, "paths", path)
        baseline_file = paths_raw.get("baseline_file", "./.file_monitor_hashes.sha256")
        log_file = paths_raw.get("log_file", "./file_monitor.log")

        audit_raw = _section(raw, "audit", path)
        audit_log = audit_raw.get("log_path", "/var/log/audit/audit.log")
        rule_key = str(audit_raw.get("rule_key", "filewatch"))
        lookback_seconds = float(audit_raw.get("lookback_seconds", 10))
        query_timeout = float(audit_raw.get("query_timeout", 3.0))

        alerts_raw = _section(raw, "alerts", path)
        console_alerts = bool(alerts_raw.get("console_alerts", True))
        throttle_seconds = float(alerts_raw.get("throttle_seconds", 5))
        throttled_kinds = [
            ChangeKind(str(k).upper()) for k in alerts_raw.get("throttled_kinds", ["MODIFIED"]) or []
        ]
        desktop_notifications = bool(alerts_raw.get("desktop_notifications", True))
        notification_timeout = float(alerts_raw.get("notification_timeout", 2.0))
        notification_expire_ms = int(alerts_raw.get("notification_expire_ms", 5000))
        notification_display = str(alerts_raw.get("notification_display", ":0"))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e

    if not file_patterns:
        raise ConfigError("monitoring.file_patterns must not be empty")

    return {
        "config_path": path,
        "watch_dir": root,
        "file_patterns": file_patterns,
        "exclude_patterns": exclude_patterns,
        "queue_size": max(1, queue_size),
        "baseline_path": resolve(baseline_file),
        "log_path": resolve(log_file),
        "audit_log_path": Path(audit_log),
        "audit_rule_key": rule_key,
        "audit_lookback_seconds": max(1.0, lookback_seconds),
        "audit_query_timeout": max(0.1, query_timeout),
        "console_alerts": console_alerts,
        "throttle_seconds": max(0.0, throttle_seconds),
        "throttled_kinds": throttled_kinds,
        "desktop_notifications": desktop_notifications,
        "notification_timeout": max(0.1, notification_timeout),
        "notification_expire_ms": max(0, notification_expire_ms),
        "notification_display": notification_display,
    }
