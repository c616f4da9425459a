#
# src/testrecon/__init__.py
#
"""
testrecon: reconciles live runner output, structured reports and fatal
errors into one trustworthy outcome per test.
"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("testrecon")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

# 🔼⚙️
