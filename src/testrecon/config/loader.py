# src/testrecon/config/loader.py

"""
Loads testrecon configuration from a TOML file.

Example::

    [global]
    log_level = "DEBUG"

    [runner]
    command_template = "vendor/bin/codecept run {suite} {target} --xml"
    report_path = "tests/_output/report.xml"
    timeout_seconds = 300
"""

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import attrs
import structlog

from testrecon.config.models import GlobalConfig, ReconConfig, RunnerConfig
from testrecon.exceptions import ConfigurationError
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("config.loader")


def _build(model: type, section: Mapping[str, Any], section_name: str, base_dir: Path) -> Any:
    known = {a.name for a in attrs.fields(model)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in [{section_name}]: {', '.join(unknown)}")
    values = dict(section)
    if model is RunnerConfig and "working_dir" in values:
        working_dir = Path(values["working_dir"])
        values["working_dir"] = working_dir if working_dir.is_absolute() else base_dir / working_dir
    try:
        return model(**values)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in [{section_name}]: {e}", details=e) from e


def load_config(config_path: Path) -> ReconConfig:
    """
    Reads and validates a configuration file.

    A relative `runner.working_dir` is resolved against the config file's
    directory; when it is absent, the config file's directory is used.
    """
    config_log = log.bind(config_path=str(config_path))
    try:
        with config_path.open("rb") as f:
            raw = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: '{config_path}'", details=e) from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Could not parse configuration file '{config_path}': {e}", details=e) from e

    base_dir = config_path.resolve().parent
    runner_section = dict(raw.get("runner", {}))
    runner_section.setdefault("working_dir", str(base_dir))

    config = ReconConfig(
        runner=_build(RunnerConfig, runner_section, "runner", base_dir),
        global_config=_build(GlobalConfig, raw.get("global", {}), "global", base_dir),
    )
    config_log.debug("Configuration loaded", runner=attrs.asdict(config.runner))
    return config

# 🔼⚙️
