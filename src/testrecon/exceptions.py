# src/testrecon/exceptions.py

"""
Custom exceptions for testrecon.

Run-level errors are reported to the result sink and recorded on the run
summary; they are never confused with a failing test.
"""


class TestReconError(Exception):
    """Base class for all testrecon errors."""

    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, message: str, details: Exception | None = None):
        self.details = details
        super().__init__(message)
        if details and hasattr(self, "add_note"):
            self.add_note(f"Original error: {type(details).__name__}: {details}")


class ConfigurationError(TestReconError):
    """Raised when the configuration file or a value in it is invalid."""

    pass


class TreeLoadError(ConfigurationError):
    """Raised when a declared test-tree manifest cannot be loaded."""

    pass


class ReportParseError(TestReconError):
    """Raised when a structured report is malformed. Always recovered locally."""

    pass


class RunError(TestReconError):
    """Base class for run-level conditions that are not test failures."""

    def __init__(
        self,
        message: str,
        target_id: str | None = None,
        details: Exception | None = None,
    ):
        self.target_id = target_id
        full_message = message
        if target_id:
            full_message += f" (Target: '{target_id}')"
        super().__init__(full_message, details=details)


class InvocationError(RunError):
    """The runner process failed to spawn or its transport was unreachable."""

    pass


class RunTimeoutError(RunError):
    """The runner exceeded its wall-clock bound and was terminated."""

    def __init__(
        self,
        timeout_seconds: float,
        target_id: str | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Test run timed out after {timeout_seconds:g}s", target_id=target_id)


class RunCancelledError(RunError):
    """The run was cancelled by the user."""

    def __init__(self, target_id: str | None = None):
        super().__init__("Test run cancelled by user", target_id=target_id)


# 🔼⚙️
