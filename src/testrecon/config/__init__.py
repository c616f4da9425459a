#
# config/__init__.py
#
"""
Configuration handling sub-package for testrecon.

Exports the loading function and core configuration models.
"""

from .loader import load_config
from .models import GlobalConfig, ReconConfig, RunnerConfig

__all__ = [
    "GlobalConfig",
    "ReconConfig",
    "RunnerConfig",
    "load_config",
]

# 🔼⚙️
