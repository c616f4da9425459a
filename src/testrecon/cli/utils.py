# src/testrecon/cli/utils.py

import logging
from pathlib import Path

import click
import structlog

from testrecon.config import ReconConfig, load_config
from testrecon.exceptions import ConfigurationError
from testrecon.telemetry.logger import setup_logging as core_setup_logging

log = structlog.get_logger("cli.utils")

LOG_LEVEL_CHOICES = click.Choice(list(logging.getLevelNamesMapping().keys()), case_sensitive=False)
DEFAULT_CONFIG_PATH = Path("testrecon.toml")


def logging_options(f):
    """Decorator to add logging options to any command."""
    f = click.option(
        "-l",
        "--log-level",
        type=LOG_LEVEL_CHOICES,
        default=None,
        envvar="TESTRECON_LOG_LEVEL",
        help="Set the logging level (overrides config file).",
    )(f)
    f = click.option(
        "--log-file",
        type=click.Path(dir_okay=False, writable=True, resolve_path=True),
        default=None,
        envvar="TESTRECON_LOG_FILE",
        help="Path to write logs to a file (JSON format).",
    )(f)
    f = click.option(
        "--json-logs",
        is_flag=True,
        default=None,
        envvar="TESTRECON_JSON_LOGS",
        help="Output console logs as JSON.",
    )(f)
    return f


def config_option(f):
    """Decorator for the optional configuration file path."""
    return click.option(
        "-c",
        "--config-path",
        type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
        default=DEFAULT_CONFIG_PATH,
        show_default=True,
        envvar="TESTRECON_CONF",
        help="Path to the testrecon configuration file (env var TESTRECON_CONF).",
        show_envvar=True,
    )(f)


def load_config_or_default(config_path: Path) -> ReconConfig:
    """
    Loads `config_path`, falling back to defaults when the default path is absent.

    An explicitly named file that does not exist is an error.
    """
    if not config_path.exists():
        if config_path == DEFAULT_CONFIG_PATH:
            log.debug("No configuration file found, using defaults", config_path=str(config_path))
            return ReconConfig()
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    return load_config(config_path)


def setup_logging_from_context(
    ctx: click.Context,
    local_log_level: str | None = None,
    local_log_file: str | None = None,
    local_json_logs: bool | None = None,
    default_log_level: str = "WARNING",
) -> None:
    """
    Setup logging using context values, allowing local overrides.
    """
    log_level_str = local_log_level or ctx.obj.get("LOG_LEVEL") or default_log_level
    log_file_path = local_log_file or ctx.obj.get("LOG_FILE")
    use_json_logs = local_json_logs if local_json_logs is not None else ctx.obj.get("JSON_LOGS", False)

    numeric_level = logging.getLevelNamesMapping().get(log_level_str.upper())
    if numeric_level is None:
        numeric_level = logging.INFO
        log_level_str = "INFO"

    core_setup_logging(
        level=numeric_level,
        json_logs=use_json_logs,
        log_file=log_file_path,
    )

    log.debug(
        "CLI logging initialized via utils",
        level=log_level_str,
        file=log_file_path or "console",
        json=use_json_logs,
    )

# ⚙️🛠️
