"""
Base classes for wrapping the external phylogenetics binaries.

Every engine and post-processing tool (RAxML, ExaML, ExaBayes, PhyML,
treePL, TreeAnnotator) is driven through the same interface: build an
argument list, run it in a working directory, and report the exit status
and captured output.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from supersmart.core.exceptions import SupersmartError

logger = logging.getLogger(__name__)

# Characters every supported engine accepts unquoted in a file argument.
_PLAIN_PATH = re.compile(r"^[A-Za-z0-9_\-./]+$")


def _shorten(text: str, limit: int, marker: str = "...") -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + marker


class UnsafePathError(SupersmartError):
    """A path that cannot be handed to an external program."""

    def __init__(self, path: Path, reason: str = ""):
        message = f"Unsafe path detected: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(
            message=message,
            suggestion=(
                "Use working directories and file names made of letters, "
                "digits, underscores, hyphens and periods."
            ),
        )
        self.path = path


def validate_path_safe(path: Path, *, must_exist: bool = False) -> Path:
    """
    Resolve a path passed on a tool command line.

    RAxML and ExaML split their arguments on whitespace internally, so
    anything outside the plain file-name alphabet is logged as a warning.
    A NUL byte is an error.
    """
    if "\x00" in str(path):
        raise UnsafePathError(path, "contains null byte")
    resolved = path.resolve()
    if _PLAIN_PATH.fullmatch(str(resolved)) is None:
        logger.warning("Path has unusual characters, engines may misread it: %s", resolved)
    if must_exist and not resolved.exists():
        raise FileNotFoundError(f"Path does not exist: {resolved}")
    return resolved


class ToolNotFoundError(SupersmartError):
    """No executable for a tool could be located."""

    def __init__(self, tool_name: str, install_hint: str = ""):
        hint = (
            f"Put {tool_name} on PATH or set the matching *_BIN key "
            f"in the configuration to its location."
        )
        if install_hint:
            hint += f"\n\nTo install: {install_hint}"
        super().__init__(message=f"Required tool '{tool_name}' not found", suggestion=hint)
        self.tool_name = tool_name


class ToolExecutionError(SupersmartError):
    """A tool exited with a non-zero status."""

    def __init__(self, tool_name: str, command: list[str], return_code: int, stderr: str):
        lines = [
            f"{tool_name} exited with status {return_code}",
            f"  command: {_shorten(' '.join(command), 240)}",
        ]
        if stderr.strip():
            lines.append(f"  stderr: {_shorten(stderr, 600, ' [...]')}")
        super().__init__(
            message="\n".join(lines),
            suggestion="Inspect the tool's input files, or rerun with --verbose.",
        )
        self.tool_name = tool_name
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class ToolTimeoutError(SupersmartError):
    """A tool ran past its time limit and was killed."""

    def __init__(self, tool_name: str, timeout_seconds: float, command: list[str]):
        super().__init__(
            message=f"{tool_name} timed out after {timeout_seconds:.0f} seconds",
            suggestion="Increase the timeout or reduce the size of the input matrix.",
        )
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds
        self.command = command


@dataclass(frozen=True)
class ToolResult:
    """Exit status and captured streams of one tool invocation."""

    command: tuple[str, ...]
    return_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @property
    def command_string(self) -> str:
        return " ".join(self.command)

    def tail(self, max_lines: int = 20) -> str:
        """Last lines of stderr (or stdout when stderr is empty)."""
        text = self.stderr.strip() or self.stdout.strip()
        lines = text.splitlines()
        return "\n".join(lines[-max_lines:])


class ExternalTool(ABC):
    """Common driver for a command-line program.

    Subclasses set ``TOOL_NAME`` (the executable looked up by default) and
    implement ``build_command``. An instance may carry an explicit executable
    from one of the ``*_BIN`` configuration keys, either a bare name searched
    on PATH or a file path.

    Lookups go through a class-wide resolver (``shutil.which`` unless
    replaced with ``set_executable_resolver``) and are memoised per name.
    """

    TOOL_NAME: ClassVar[str]
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = ()
    INSTALL_HINT: ClassVar[str] = ""

    _executable_cache: ClassVar[dict[str, Path | None]] = {}
    _executable_resolver: ClassVar[Callable[[str], str | None]] = staticmethod(shutil.which)

    def __init__(self, executable: str | None = None):
        self.executable = executable

    @classmethod
    def _resolve(cls, names: tuple[str, ...]) -> Path:
        key = names[0]
        if key not in cls._executable_cache:
            located = (cls._executable_resolver(name) for name in names)
            first = next((found for found in located if found), None)
            cls._executable_cache[key] = Path(first) if first else None
        path = cls._executable_cache[key]
        if path is None:
            raise ToolNotFoundError(key, cls.INSTALL_HINT)
        return path

    @classmethod
    def get_executable(cls) -> Path:
        """Path of the default executable, trying ``TOOL_ALIASES`` in turn."""
        return cls._resolve((cls.TOOL_NAME, *cls.TOOL_ALIASES))

    def executable_path(self) -> Path:
        """The executable to run: the configured override, else the default."""
        if self.executable is None or self.executable == self.TOOL_NAME:
            return self.get_executable()
        if "/" in self.executable:
            path = Path(self.executable)
            if not path.exists():
                raise ToolNotFoundError(self.executable, self.INSTALL_HINT)
            return path
        return self._resolve((self.executable,))

    @classmethod
    def check_available(cls) -> bool:
        try:
            cls.get_executable()
        except ToolNotFoundError:
            return False
        return True

    @classmethod
    def clear_cache(cls) -> None:
        cls._executable_cache.clear()

    @classmethod
    def set_executable_resolver(cls, resolver: Callable[[str], str | None]) -> None:
        """Replace the PATH lookup, e.g. ``lambda name: f"/usr/bin/{name}"`` in tests."""
        ExternalTool._executable_resolver = staticmethod(resolver)
        cls.clear_cache()

    @classmethod
    def reset_executable_resolver(cls) -> None:
        ExternalTool._executable_resolver = staticmethod(shutil.which)
        cls.clear_cache()

    @abstractmethod
    def build_command(self, **kwargs: object) -> list[str]:
        """Build the command-line arguments, including the executable."""
        ...

    def run(
        self,
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        dry_run: bool = False,
        **kwargs: object,
    ) -> ToolResult:
        """
        Build the command from ``kwargs`` and run it to completion.

        A non-zero exit status is returned, not raised. With ``dry_run`` the
        command is built but never started. A missing executable raises
        ToolNotFoundError and an expired ``timeout`` raises ToolTimeoutError.
        """
        command = self.build_command(**kwargs)
        if dry_run:
            return ToolResult(tuple(command), 0, "[dry-run] Command not executed", "", 0.0)

        logger.debug("Running %s", " ".join(command))
        start = time.perf_counter()
        try:
            completed = subprocess.run(command, cwd=cwd, timeout=timeout, capture_output=True, text=True)
        except subprocess.TimeoutExpired as exc:
            raise ToolTimeoutError(self.TOOL_NAME, timeout or 0, command) from exc
        except FileNotFoundError as exc:
            raise ToolNotFoundError(self.TOOL_NAME, self.INSTALL_HINT) from exc

        return ToolResult(
            command=tuple(command),
            return_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            elapsed_seconds=time.perf_counter() - start,
        )

    def run_or_raise(self, **kwargs: object) -> ToolResult:
        """Like ``run`` but a failed invocation raises ToolExecutionError."""
        result = self.run(**kwargs)
        if result.success:
            return result
        raise ToolExecutionError(self.TOOL_NAME, list(result.command), result.return_code, result.stderr)


class MPITool(ExternalTool):
    """An MPI program launched through ``mpirun -np <nodes>``.

    With a single node the program is started directly.
    """

    def __init__(self, executable: str | None = None, mpirun: str = "mpirun", nodes: int = 1):
        super().__init__(executable)
        self.mpirun = mpirun
        self.nodes = nodes

    def launcher(self) -> list[str]:
        exe = str(self.executable_path())
        if self.nodes <= 1:
            return [exe]
        mpirun = shutil.which(self.mpirun) or self.mpirun
        return [mpirun, "-np", str(self.nodes), exe]
