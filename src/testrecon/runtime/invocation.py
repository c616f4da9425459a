# src/testrecon/runtime/invocation.py

"""
A configurable invocation builder that fills a command template from a node id.
"""

import shlex
from pathlib import Path

import structlog

from testrecon.exceptions import ConfigurationError
from testrecon.nodes import DATASET_SEPARATOR, FILE_SEPARATOR, METHOD_SEPARATOR
from testrecon.protocols import InvocationBuilder
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.invocation")

PLACEHOLDERS = ("target", "suite", "file", "method", "report", "coverage")


def split_node_id(node_id: str) -> dict[str, str]:
    """``unit:FooTest.php::testLogin#0`` -> suite, file, method parts (missing parts are empty)."""
    file_part, _, method = node_id.partition(METHOD_SEPARATOR)
    method = method.split(DATASET_SEPARATOR, 1)[0]
    suite, _, file = file_part.partition(FILE_SEPARATOR)
    return {"suite": suite, "file": file, "method": method}


class TemplateInvocationBuilder(InvocationBuilder):
    """
    Formats a command template such as
    ``vendor/bin/codecept run {suite} {target} --xml {report}``.

    ``{target}`` expands to ``file:method``, ``file`` or nothing, depending on
    the depth of the node id. Every substituted value is shell-quoted.
    """

    def __init__(self, template: str):
        if not template or not template.strip():
            raise ConfigurationError("Command template must not be empty")
        try:
            template.format(**{name: "" for name in PLACEHOLDERS})
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid command template '{template}'. Allowed placeholders: {list(PLACEHOLDERS)}",
                details=e,
            ) from e
        self.template = template

    def build_command(
        self,
        target_id: str,
        report_path: Path | None = None,
        coverage_path: Path | None = None,
    ) -> str:
        parts = split_node_id(target_id)
        if parts["method"]:
            target = f"{parts['file']}:{parts['method']}"
        else:
            target = parts["file"]
        values = {
            "target": target,
            "suite": parts["suite"],
            "file": parts["file"],
            "method": parts["method"],
            "report": str(report_path) if report_path else "",
            "coverage": str(coverage_path) if coverage_path else "",
        }
        command = self.template.format(**{k: shlex.quote(v) if v else "" for k, v in values.items()})
        log.debug("Built runner command", target_id=target_id, command=command)
        return command

# 🔼⚙️
