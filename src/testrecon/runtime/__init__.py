#
# src/testrecon/runtime/__init__.py
#
"""
Runtime pieces around the engine: process execution, command building,
the run controller and result sinks.
"""
from .controller import RunController, RunSummary
from .invocation import TemplateInvocationBuilder
from .output import OutputCleaner
from .process import SubprocessExecutor, SubprocessHandle
from .sinks import ConsoleSink, RecordingSink

__all__ = [
    "ConsoleSink",
    "OutputCleaner",
    "RecordingSink",
    "RunController",
    "RunSummary",
    "SubprocessExecutor",
    "SubprocessHandle",
    "TemplateInvocationBuilder",
]

# 🔼⚙️
