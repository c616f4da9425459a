# src/testrecon/config/models.py

"""
Attrs-based data models for testrecon configuration.
"""

import logging
from pathlib import Path
from typing import Any

from attrs import define, field

DEFAULT_REPORT_PATH = Path("tests/_output/report.xml")
DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_KILL_GRACE_SECONDS = 5.0


# --- Validators ---
def _validate_log_level(inst: Any, attr: Any, value: str) -> None:
    """Validator for standard logging level names."""
    valid = logging.getLevelNamesMapping().keys()
    if value.upper() not in valid:
        raise ValueError(f"Invalid log_level '{value}'. Must be one of {list(valid)}.")


def _validate_non_negative(inst: Any, attr: Any, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"Field '{attr.name}' must be a non-negative number, got {value!r}")


def _validate_positive(inst: Any, attr: Any, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Field '{attr.name}' must be a positive number, got {value!r}")


@define(frozen=True, slots=True)
class RunnerConfig:
    """How the external runner is invoked and how long we wait for it."""

    command_template: str | None = field(default=None)
    working_dir: Path = field(default=Path("."), converter=Path)
    report_path: Path = field(default=DEFAULT_REPORT_PATH, converter=Path)
    timeout_seconds: float = field(default=DEFAULT_TIMEOUT_SECONDS, validator=_validate_positive)
    # Time a terminated runner gets to exit before it is killed outright.
    kill_grace_seconds: float = field(default=DEFAULT_KILL_GRACE_SECONDS, validator=_validate_positive)
    report_wait_seconds: float = field(default=0.5, validator=_validate_non_negative)
    report_poll_interval: float = field(default=0.05, validator=_validate_positive)
    # A report older than the run is left over from a previous one.
    ignore_stale_report: bool = field(default=True)
    clean_output: bool = field(default=True)

    def resolved_report_path(self) -> Path:
        if self.report_path.is_absolute():
            return self.report_path
        return self.working_dir / self.report_path


@define(frozen=True, slots=True)
class GlobalConfig:
    """Global default settings for testrecon."""

    log_level: str = field(default="INFO", validator=_validate_log_level)

    @property
    def numeric_log_level(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level.upper()]


@define(frozen=True, slots=True)
class ReconConfig:
    """Root configuration object for testrecon."""

    runner: RunnerConfig = field(factory=RunnerConfig)
    global_config: GlobalConfig = field(factory=GlobalConfig, metadata={"toml_name": "global"})

# 🔼⚙️
