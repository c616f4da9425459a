#
# src/testrecon/telemetry/__init__.py
#
"""
Logging setup for testrecon.
"""
from .logger import StructLogger, setup_logging

__all__ = ["StructLogger", "setup_logging"]

# 🔼⚙️
