"""Runtime helpers for issuecascade CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .config import CascadeConfig, load_config, load_from_directory
from .logging import configure_logging, get_logger


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any,
    *,
    loader: Callable[[str], CascadeConfig] = load_config,
    cwd: Path | None = None,
) -> CascadeConfig:
    """Load, override and validate the CascadeConfig for an argparse namespace.

    An explicit ``--config`` path wins; otherwise the config file is searched
    for upward from ``cwd``. Environment overrides apply last.
    """
    config_path = getattr(args, "config", None)
    cfg = loader(config_path) if config_path else load_from_directory(cwd or Path.cwd())
    cfg.apply_env_overrides()
    cfg.validate()
    configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    return cfg


def execute_command(handler: _HandlerCallable, args: Any, command: str) -> int:
    """Execute a command handler and log its duration and exit code."""
    start = time.monotonic()
    exit_code = 1
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
        return exit_code
    finally:
        duration_ms = max(0.0, time.monotonic() - start) * 1000
        get_logger().log_performance(
            command, duration_ms, exit_code=exit_code, dry_run=bool(getattr(args, "dry_run", False))
        )


__all__ = ["execute_command", "prepare_config"]
