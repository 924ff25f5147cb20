"""tmux as the session host.

Hosted programs live in detached tmux sessions so they outlive the UI
process. All calls shell out to the tmux binary with asyncio subprocesses;
nothing here holds state beyond the binary path.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Optional, Protocol

from devtrack.constants import HOST_COLOR_ENV, HOST_PREFIX_ROOT
from devtrack.core.errors import DevtrackError
from devtrack.logging_config import get_logger
from devtrack.sessions.models import LaunchSpec

logger = get_logger(__name__)


class HostError(DevtrackError):
    """A tmux command failed or tmux itself could not be executed."""


class SessionHost(Protocol):
    """Operations the multiplexer needs from a session host."""

    async def has_session(self, name: str) -> bool: ...

    async def new_session(self, name: str, launch: LaunchSpec, cols: int, rows: int) -> None: ...

    async def resize(self, name: str, cols: int, rows: int) -> None: ...

    async def capture(self, name: str, scrollback: int) -> Optional[str]: ...

    async def send_keys(self, name: str, keys: tuple[str, ...], literal: bool = False) -> bool: ...

    async def kill_session(self, name: str) -> bool: ...

    async def list_sessions(self) -> list[str]: ...


class TmuxHost:
    def __init__(self, binary: str = "tmux") -> None:
        self.binary = binary

    async def _run(self, *args: str, env: Optional[dict[str, str]] = None, cwd: Optional[str] = None) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
            )
        except OSError as e:
            raise HostError(f"Failed to execute {self.binary}: {e}") from e
        stdout, stderr = await proc.communicate()
        returncode = proc.returncode if proc.returncode is not None else -1
        return (
            returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace").strip(),
        )

    async def has_session(self, name: str) -> bool:
        try:
            returncode, _, _ = await self._run("has-session", "-t", name)
        except HostError as e:
            logger.warning("has-session %s failed: %s", name, e)
            return False
        return returncode == 0

    async def new_session(self, name: str, launch: LaunchSpec, cols: int, rows: int) -> None:
        """Create a detached session running ``launch`` at the given size.

        Raises HostError when tmux cannot create the session.
        """
        env = dict(HOST_COLOR_ENV)
        env.update(launch.env)
        args = ["new-session", "-d", "-s", name, "-x", str(cols), "-y", str(rows)]
        if launch.work_dir:
            args.extend(["-c", launch.work_dir])
        for key, value in env.items():
            args.extend(["-e", f"{key}={value}"])
        args.append(launch.executable)
        args.extend(launch.args)

        cwd = launch.work_dir if launch.work_dir and os.path.isdir(launch.work_dir) else None
        returncode, _, stderr = await self._run(*args, env={**os.environ, **env}, cwd=cwd)
        if returncode != 0:
            raise HostError(f"tmux new-session {name} failed ({returncode}): {stderr}")

        await self.resize(name, cols, rows)
        logger.info("Created tmux session %s (%dx%d): %s", name, cols, rows, launch.executable)

    async def resize(self, name: str, cols: int, rows: int) -> None:
        """Resize a detached session and nudge the pane process with SIGWINCH."""
        await self._run("set-option", "-t", name, "window-size", "manual")
        returncode, _, stderr = await self._run("resize-window", "-t", name, "-x", str(cols), "-y", str(rows))
        if returncode != 0:
            logger.warning("Failed to resize tmux session %s: %s", name, stderr)
            return
        returncode, stdout, _ = await self._run("display-message", "-t", name, "-p", "#{pane_pid}")
        pid = stdout.strip()
        if returncode == 0 and pid.isdigit():
            try:
                os.kill(int(pid), signal.SIGWINCH)
            except (ProcessLookupError, PermissionError) as e:
                logger.debug("SIGWINCH to pane %s of %s failed: %s", pid, name, e)

    async def capture(self, name: str, scrollback: int) -> Optional[str]:
        """Visible pane plus ``scrollback`` lines, with escape sequences. None on failure."""
        try:
            returncode, stdout, stderr = await self._run("capture-pane", "-t", name, "-p", "-e", "-S", f"-{scrollback}")
        except HostError as e:
            logger.warning("capture-pane %s failed: %s", name, e)
            return None
        if returncode != 0:
            logger.debug("capture-pane %s returned %d: %s", name, returncode, stderr)
            return None
        return stdout

    async def send_keys(self, name: str, keys: tuple[str, ...], literal: bool = False) -> bool:
        args = ["send-keys", "-t", name]
        if literal:
            args.append("-l")
        args.extend(keys)
        try:
            returncode, _, stderr = await self._run(*args)
        except HostError as e:
            logger.warning("send-keys %s failed: %s", name, e)
            return False
        if returncode != 0:
            logger.debug("send-keys %s returned %d: %s", name, returncode, stderr)
        return returncode == 0

    async def kill_session(self, name: str) -> bool:
        try:
            returncode, _, _ = await self._run("kill-session", "-t", name)
        except HostError as e:
            logger.warning("kill-session %s failed: %s", name, e)
            return False
        if returncode == 0:
            logger.info("Killed tmux session %s", name)
        return returncode == 0

    async def list_sessions(self) -> list[str]:
        """Names of all devtrack-owned tmux sessions (empty when no server runs)."""
        try:
            returncode, stdout, _ = await self._run("ls", "-F", "#{session_name}")
        except HostError as e:
            logger.warning("tmux ls failed: %s", e)
            return []
        if returncode != 0:
            return []
        names = [line.strip() for line in stdout.splitlines()]
        return [n for n in names if n.startswith(HOST_PREFIX_ROOT)]
