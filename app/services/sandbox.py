"""Sandboxed execution runtime for project commands and the preview server."""

import asyncio
import json
import os
import shutil
import signal
import tempfile
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from app.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0

# Installed dependencies survive a remount
PRESERVED_DIRS = frozenset({"node_modules"})


@dataclass
class SandboxConfig:
    """Configuration for the execution runtime."""

    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    preview_command: str = "npm install && npm run dev"
    workdir: str | None = None
    max_terminal_lines: int = 500

    @classmethod
    def from_env(cls) -> "SandboxConfig":
        """Build the configuration from environment variables."""
        return cls(
            command_timeout=float(os.getenv("COMMAND_TIMEOUT_SECONDS", DEFAULT_COMMAND_TIMEOUT)),
            preview_command=os.getenv("PREVIEW_COMMAND", cls.preview_command),
            workdir=os.getenv("SANDBOX_WORKDIR") or None,
        )


@dataclass
class CommandResult:
    """Combined output and exit status of a command."""

    output: str
    exit_code: int | None
    timed_out: bool = False


class SandboxRuntime(Protocol):
    """Interface for the process-wide execution sandbox.

    Each project works in its own directory inside the sandbox.
    """

    async def boot(self) -> None:
        """Boot the sandbox; concurrent callers share one boot."""
        ...

    async def mount(self, project_id: str, files: dict[str, str]) -> None:
        """Make the project's directory hold exactly the given files."""
        ...

    async def run(self, project_id: str, command: str, timeout: float | None = None) -> CommandResult:
        """Run a shell command in the project's directory, killing it when the timeout expires.

        A timeout is reported in the result, never raised.
        """
        ...

    async def start_preview(self, project_id: str, files: dict[str, str]) -> None:
        """Mount files, then (re)install dependencies and start the dev server."""
        ...

    def terminal_output(self, project_id: str) -> list[str]:
        """Recent command and preview output lines of the project."""
        ...

    async def teardown(self) -> None:
        """Stop everything and release the sandbox."""
        ...


def ensure_package_json(files: dict[str, str], project_name: str = "my-app") -> dict[str, str]:
    """Add a minimal static-server package.json when the project has none."""
    if "package.json" in files:
        return files
    package = {
        "name": project_name,
        "version": "1.0.0",
        "type": "module",
        "scripts": {"dev": "npx serve -l 3000"},
    }
    return {**files, "package.json": json.dumps(package, indent=2)}


def sync_directory(root: Path, files: dict[str, str]) -> None:
    """Write the files under root and remove every other file, except installed dependencies.

    Raises:
        ValueError: If a path points outside root
    """
    root = root.resolve()
    wanted: dict[Path, str] = {}
    for path, content in files.items():
        target = (root / path).resolve()
        if target == root or not target.is_relative_to(root):
            raise ValueError(f"Path escapes the sandbox: {path}")
        wanted[target] = content

    for target, content in wanted.items():
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        current = Path(dirpath)
        if PRESERVED_DIRS.intersection(current.relative_to(root).parts):
            continue
        for filename in filenames:
            if current / filename not in wanted:
                (current / filename).unlink()
        if current != root and not any(current.iterdir()):
            current.rmdir()


class LocalProcessRuntime:
    """Runtime backed by local subprocesses, one working directory per project."""

    def __init__(self, config: SandboxConfig | None = None):
        """Initialize the runtime.

        Args:
            config: Runtime configuration (defaults from environment)
        """
        self.config = config or SandboxConfig.from_env()
        self.workdir: Path | None = None
        self._terminal: dict[str, deque[str]] = {}
        self._boot_lock = asyncio.Lock()
        self._boot_task: asyncio.Task[None] | None = None
        self._preview_process: asyncio.subprocess.Process | None = None
        self._preview_reader: asyncio.Task[None] | None = None

    @property
    def booted(self) -> bool:
        return self.workdir is not None

    async def boot(self) -> None:
        if self.booted:
            return

        async with self._boot_lock:
            if self._boot_task is None:
                self._boot_task = asyncio.create_task(self._boot())
            task = self._boot_task

        try:
            await task
        except Exception:
            async with self._boot_lock:
                if self._boot_task is task:
                    self._boot_task = None
            raise

    async def _boot(self) -> None:
        if self.config.workdir:
            workdir = Path(self.config.workdir)
            await asyncio.to_thread(workdir.mkdir, parents=True, exist_ok=True)
        else:
            workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="studio-sandbox-"))
        self.workdir = workdir
        logger.info(f"Sandbox booted in {workdir}")

    def project_dir(self, project_id: str) -> Path:
        """Working directory of a project.

        Raises:
            RuntimeError: If the sandbox is not booted
            ValueError: If the project id is not a plain name
        """
        if self.workdir is None:
            raise RuntimeError("Sandbox is not booted")
        if not project_id or project_id in (".", "..") or "/" in project_id or "\\" in project_id:
            raise ValueError(f"Invalid project id for the sandbox: {project_id!r}")
        return self.workdir / project_id

    async def _ensure_project_dir(self, project_id: str) -> Path:
        await self.boot()
        directory = self.project_dir(project_id)
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        return directory

    async def mount(self, project_id: str, files: dict[str, str]) -> None:
        directory = await self._ensure_project_dir(project_id)
        await asyncio.to_thread(sync_directory, directory, files)
        logger.debug(f"Mounted {len(files)} files for project {project_id}")

    def terminal_output(self, project_id: str) -> list[str]:
        return list(self._terminal.get(project_id, ()))

    def _terminal_for(self, project_id: str) -> deque[str]:
        if project_id not in self._terminal:
            self._terminal[project_id] = deque(maxlen=self.config.max_terminal_lines)
        return self._terminal[project_id]

    async def run(self, project_id: str, command: str, timeout: float | None = None) -> CommandResult:
        directory = await self._ensure_project_dir(project_id)
        timeout = timeout or self.config.command_timeout
        terminal = self._terminal_for(project_id)
        terminal.append(f"$ {command}")
        logger.info(f"Running command for project {project_id}: {command}")

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=directory,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout)
        except TimeoutError:
            logger.warning(f"Command timed out after {timeout:g}s, killing: {command}")
            await self._kill(process)
            message = f"Command timed out after {timeout:g}s: {command}"
            terminal.append(message)
            return CommandResult(output=message, exit_code=None, timed_out=True)

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        terminal.extend(line for line in output.splitlines() if line.strip())
        return CommandResult(output=output, exit_code=process.returncode)

    async def start_preview(self, project_id: str, files: dict[str, str]) -> None:
        await self.mount(project_id, ensure_package_json(files))
        await self._stop_preview()

        logger.info(f"Starting preview for project {project_id}: {self.config.preview_command}")
        terminal = self._terminal_for(project_id)
        terminal.append(f"$ {self.config.preview_command}")
        self._preview_process = await asyncio.create_subprocess_shell(
            self.config.preview_command,
            cwd=self.project_dir(project_id),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        self._preview_reader = asyncio.create_task(self._drain_preview(self._preview_process, terminal))

    async def _drain_preview(self, process: asyncio.subprocess.Process, terminal: deque[str]) -> None:
        if process.stdout is None:
            raise RuntimeError("Preview process has no output pipe")
        async for line in process.stdout:
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                terminal.append(text)
        await process.wait()
        logger.info(f"Preview process exited with code {process.returncode}")

    async def _stop_preview(self) -> None:
        if self._preview_process is not None:
            await self._kill(self._preview_process)
            self._preview_process = None
        if self._preview_reader is not None:
            self._preview_reader.cancel()
            self._preview_reader = None

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        await process.wait()

    async def teardown(self) -> None:
        await self._stop_preview()
        async with self._boot_lock:
            if self.workdir is not None and not self.config.workdir:
                await asyncio.to_thread(shutil.rmtree, self.workdir, ignore_errors=True)
            self.workdir = None
            self._boot_task = None
        self._terminal.clear()
        logger.info("Sandbox torn down")


_sandbox_runtime: LocalProcessRuntime | None = None


def get_sandbox_runtime() -> LocalProcessRuntime:
    """Get or create the process-wide sandbox runtime."""
    global _sandbox_runtime
    if _sandbox_runtime is None:
        _sandbox_runtime = LocalProcessRuntime()
    return _sandbox_runtime
