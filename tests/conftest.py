import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from testrecon.config import RunnerConfig
from testrecon.engine.classifier import Channel
from testrecon.exceptions import InvocationError
from testrecon.nodes import TestTree
from testrecon.protocols import OutputChunk

TREE_MANIFEST = {
    "suites": [
        {
            "name": "unit",
            "files": [
                {
                    "name": "LoginTest.php",
                    "path": "tests/unit/LoginTest.php",
                    "methods": [
                        {"name": "testLogin", "line": 10, "end_line": 18},
                        {"name": "testLogout", "line": 20, "end_line": 28},
                        {"name": "testRemember", "line": 30, "end_line": 40, "datasets": ["#0", "#1"]},
                    ],
                },
                {
                    "name": "CartTest.php",
                    "path": "tests/unit/CartTest.php",
                    "methods": ["testAdd", "testRemove"],
                },
            ],
        },
        {
            "name": "acceptance",
            "files": [
                {
                    "name": "SignupCest.php",
                    "path": "tests/acceptance/SignupCest.php",
                    "methods": ["signUp", "signIn"],
                },
            ],
        },
    ]
}


@pytest.fixture
def tree() -> TestTree:
    return TestTree.from_mapping(TREE_MANIFEST)


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    """Fast-polling config rooted in a temp dir."""
    return RunnerConfig(
        command_template="runner {suite} {target} --xml {report}",
        working_dir=tmp_path,
        report_path=tmp_path / "report.xml",
        timeout_seconds=5,
        report_wait_seconds=0,
        report_poll_interval=0.01,
    )


def stdout(text: str) -> OutputChunk:
    return OutputChunk(channel=Channel.STDOUT, data=text.encode("utf-8"))


def stderr(text: str) -> OutputChunk:
    return OutputChunk(channel=Channel.STDERR, data=text.encode("utf-8"))


class FakeHandle:
    """
    Replays scripted chunks; with `block=True` it hangs until killed.

    With `ignore_terminate=True` only a forced kill ends it.
    """

    KILLED_EXIT_CODE = -15
    FORCE_KILLED_EXIT_CODE = -9

    def __init__(
        self,
        chunks: list[OutputChunk],
        exit_code: int = 0,
        block: bool = False,
        ignore_terminate: bool = False,
    ):
        self._chunks = chunks
        self._exit_code = exit_code
        self._block = block
        self._ignore_terminate = ignore_terminate
        self._killed = asyncio.Event()
        self.kill_count = 0
        self.forced = False
        self.chunks_delivered = asyncio.Event()

    @property
    def killed(self) -> bool:
        return self._killed.is_set()

    async def chunks(self):
        for chunk in self._chunks:
            await asyncio.sleep(0)
            yield chunk
        self.chunks_delivered.set()
        if self._block:
            await self._killed.wait()

    async def wait(self) -> int:
        if self._block:
            await self._killed.wait()
            return self.FORCE_KILLED_EXIT_CODE if self.forced else self.KILLED_EXIT_CODE
        return self._exit_code

    def kill(self, force: bool = False) -> None:
        self.kill_count += 1
        self.forced = self.forced or force
        if force or not self._ignore_terminate:
            self._killed.set()


class FakeExecutor:
    """Hands out a prepared handle and optionally writes a report at spawn time."""

    def __init__(
        self,
        handle: FakeHandle | None = None,
        report_xml: str | None = None,
        report_path: Path | None = None,
        error: Exception | None = None,
    ):
        self.handle = handle or FakeHandle([])
        self.report_xml = report_xml
        self.report_path = report_path
        self.error = error
        self.commands: list[str] = []

    async def spawn(self, command: str, cwd: Path) -> FakeHandle:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        if self.report_xml is not None and self.report_path is not None:
            self.report_path.write_text(self.report_xml, encoding="utf-8")
        return self.handle


@pytest.fixture
def failing_executor() -> FakeExecutor:
    return FakeExecutor(error=InvocationError("docker: container not running"))


@pytest.fixture
def out() -> SimpleNamespace:
    """Chunk factories: ``out.stdout("...")`` and ``out.stderr("...")``."""
    return SimpleNamespace(stdout=stdout, stderr=stderr)


@pytest.fixture
def make_handle():
    return FakeHandle


@pytest.fixture
def make_executor():
    return FakeExecutor
