"""Async process management for the bore binary."""

import asyncio
import os
import re
import shutil
from collections import deque
from pathlib import Path

from ..common.exceptions import BinaryNotFoundError, TunnelError
from ..common.logging import get_logger
from ..common.utils import strip_ansi

logger = get_logger(__name__)

COMMON_BINARY_PATHS = (
    "/usr/local/bin/bore",
    "/usr/bin/bore",
    "/opt/bore/bore",
    Path.home() / ".cargo" / "bin" / "bore",
)

OUTPUT_TAIL_LINES = 20


def find_bore_binary(binary_path: str | None = None) -> str:
    """Find the bore binary.

    Lookup order: explicit path, ``bore`` on PATH, ``BORE_BINARY_PATH``,
    then common install locations.

    Raises:
        BinaryNotFoundError: If no executable bore binary can be found
    """
    if binary_path:
        path = Path(binary_path)
        if not path.is_file():
            raise BinaryNotFoundError(f"bore binary not found at {binary_path}")
        if not os.access(binary_path, os.X_OK):
            raise BinaryNotFoundError(f"bore binary is not executable: {binary_path}")
        return binary_path

    found = shutil.which("bore")
    if found:
        return found

    env_path = os.environ.get("BORE_BINARY_PATH")
    if env_path and Path(env_path).is_file():
        return env_path

    for candidate in COMMON_BINARY_PATHS:
        if Path(candidate).is_file():
            return str(candidate)

    raise BinaryNotFoundError(
        "bore binary not found. Install it from https://github.com/ekzhang/bore "
        "or set BORE_BINARY_PATH."
    )


class BoreProcess:
    """One bore subprocess: start, handshake detection, output draining, stop."""

    def __init__(
        self,
        binary_path: str,
        args: list[str],
        secret: str | None = None,
        name: str = "bore",
        kill_timeout: float = 2.0,
    ):
        self.binary_path = binary_path
        self.args = args
        self.name = name
        self.kill_timeout = kill_timeout
        self._secret = secret
        self._process: asyncio.subprocess.Process | None = None
        self._tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def output_tail(self) -> str:
        """Last lines printed by the process, for error messages."""
        return "\n".join(self._tail)

    async def start(self) -> None:
        """Spawn the process.

        Raises:
            TunnelError: If the process cannot be spawned
        """
        env = dict(os.environ)
        env["NO_COLOR"] = "1"
        env.pop("BORE_SECRET", None)
        # Kept out of argv.
        if self._secret:
            env["BORE_SECRET"] = self._secret

        logger.info("Starting bore process", name=self.name, args=self.args)
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.binary_path,
                *self.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
                env=env,
            )
        except OSError as e:
            logger.error("Failed to start bore process", name=self.name, error=str(e))
            raise TunnelError(f"Failed to start bore process: {e}") from e
        logger.debug("bore process spawned", name=self.name, pid=self._process.pid)

    async def _readline(self) -> str | None:
        assert self._process is not None and self._process.stdout is not None
        raw = await self._process.stdout.readline()
        if not raw:
            return None
        line = strip_ansi(raw.decode(errors="replace")).strip()
        if line:
            self._tail.append(line)
        return line

    async def _exit_error(self, what: str) -> TunnelError:
        assert self._process is not None
        returncode = await self._process.wait()
        detail = self.output_tail or "no output"
        return TunnelError(f"{what} (exit code: {returncode}): {detail}")

    async def wait_for_line(self, pattern: re.Pattern[str], timeout: float) -> re.Match[str]:
        """Read output until a line matches ``pattern``.

        Raises:
            TunnelError: If the process exits first or the timeout elapses
        """

        async def scan() -> re.Match[str]:
            while True:
                line = await self._readline()
                if line is None:
                    raise await self._exit_error(f"{self.name} exited during handshake")
                match = pattern.search(line)
                if match:
                    return match

        try:
            return await asyncio.wait_for(scan(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self.stop()
            raise TunnelError(
                f"{self.name} handshake timed out after {timeout:.1f}s: "
                f"{self.output_tail or 'no output'}"
            ) from e

    async def wait_for_startup(self, delay: float) -> None:
        """Require the process to stay alive for ``delay`` seconds.

        Raises:
            TunnelError: If the process exits within the delay
        """
        assert self._process is not None
        try:
            await asyncio.wait_for(self._process.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        assert self._process.stdout is not None
        remaining = await self._process.stdout.read()
        for line in strip_ansi(remaining.decode(errors="replace")).splitlines():
            if line.strip():
                self._tail.append(line.strip())
        raise await self._exit_error(f"{self.name} failed to start")

    async def serve(self) -> None:
        """Relay output until the process exits.

        Raises:
            TunnelError: If the process exits with a non-zero code
        """
        while True:
            line = await self._readline()
            if line is None:
                break
            if line:
                logger.debug("bore output", name=self.name, line=line)

        assert self._process is not None
        returncode = await self._process.wait()
        if returncode != 0:
            raise TunnelError(
                f"{self.name} exited with code {returncode}: {self.output_tail or 'no output'}"
            )
        logger.info("bore process exited", name=self.name)

    async def stop(self) -> None:
        """Terminate the process, killing it if it does not exit in time."""
        if not self.is_running():
            return
        assert self._process is not None
        logger.info("Stopping bore process", name=self.name, pid=self._process.pid)
        try:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "bore process did not terminate, killing", name=self.name, pid=self.pid
                )
                self._process.kill()
                await self._process.wait()
        except ProcessLookupError:
            pass

