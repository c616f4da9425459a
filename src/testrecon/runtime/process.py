# src/testrecon/runtime/process.py

"""
A local process executor using asyncio.subprocess.
"""

import asyncio
import os
import signal
from collections.abc import AsyncIterator
from pathlib import Path

import structlog

from testrecon.engine.classifier import Channel
from testrecon.exceptions import InvocationError
from testrecon.protocols import OutputChunk, ProcessExecutor, ProcessHandle
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.process")

READ_SIZE = 4096
# Exit code a POSIX shell uses when the command itself was not found.
SHELL_COMMAND_NOT_FOUND = 127


class SubprocessHandle(ProcessHandle):
    """Wraps an asyncio subprocess started in its own process group."""

    def __init__(self, process: asyncio.subprocess.Process, read_size: int = READ_SIZE):
        self._process = process
        self._read_size = read_size

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def chunks(self) -> AsyncIterator[OutputChunk]:
        queue: asyncio.Queue[OutputChunk | None] = asyncio.Queue()

        async def pump(stream: asyncio.StreamReader | None, channel: Channel) -> None:
            try:
                while stream is not None:
                    data = await stream.read(self._read_size)
                    if not data:
                        break
                    queue.put_nowait(OutputChunk(channel=channel, data=data))
            finally:
                queue.put_nowait(None)

        pumps = [
            asyncio.create_task(pump(self._process.stdout, Channel.STDOUT)),
            asyncio.create_task(pump(self._process.stderr, Channel.STDERR)),
        ]
        open_channels = len(pumps)
        try:
            while open_channels:
                item = await queue.get()
                if item is None:
                    open_channels -= 1
                    continue
                yield item
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

    async def wait(self) -> int:
        return await self._process.wait()

    def kill(self, force: bool = False) -> None:
        if self._process.returncode is not None:
            return
        try:
            if os.name == "posix":
                # The shell's children (docker exec, php, ...) share its group.
                sig = signal.SIGKILL if force else signal.SIGTERM
                os.killpg(self._process.pid, sig)
            elif force:
                self._process.kill()
            else:
                self._process.terminate()
        except ProcessLookupError:
            pass
        log.debug("Signalled runner process", pid=self._process.pid, force=force)


class SubprocessExecutor(ProcessExecutor):
    """Runs command strings through the system shell."""

    def __init__(self, env: dict[str, str] | None = None, read_size: int = READ_SIZE):
        self._env = env
        self._read_size = read_size

    async def spawn(self, command: str, cwd: Path) -> SubprocessHandle:
        spawn_log = log.bind(command=command, working_dir=str(cwd))
        spawn_log.info("Spawning test runner")
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env={**os.environ, **self._env} if self._env else None,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as e:
            spawn_log.error("Working directory or shell not found")
            raise InvocationError(f"Could not start test runner in '{cwd}'", details=e) from e
        except OSError as e:
            spawn_log.error("Failed to spawn test runner", error=str(e))
            raise InvocationError(f"Could not start test runner: {e}", details=e) from e

        spawn_log.debug("Test runner started", pid=process.pid)
        return SubprocessHandle(process, read_size=self._read_size)

# 🔼⚙️
