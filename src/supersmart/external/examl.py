"""
ExaML wrappers: the ``parse-examl`` converter and the MPI tree search.

ExaML does not read phylip directly; the matrix is first converted to a
binary file with ``parse-examl``. The search needs a starting tree.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

from supersmart.external.base import ExternalTool, MPITool


class ExaMLParser(ExternalTool):
    """Converts a relaxed phylip matrix to ExaML's binary format."""

    TOOL_NAME: ClassVar[str] = "parse-examl"
    INSTALL_HINT: ClassVar[str] = "https://github.com/stamatak/ExaML"

    def build_command(self, *, matrix: Path, run_id: str, model: str = "DNA") -> list[str]:
        # writes <run_id>.binary in the working directory
        return [str(self.executable_path()), "-s", str(matrix), "-m", model, "-n", run_id]

    @staticmethod
    def binary_file(workdir: Path, run_id: str) -> Path:
        return workdir / f"{run_id}.binary"


class ExaML(MPITool):
    """Wrapper for the ExaML MPI search."""

    TOOL_NAME: ClassVar[str] = "examl"
    INSTALL_HINT: ClassVar[str] = "https://github.com/stamatak/ExaML"

    def build_command(
        self,
        *,
        binary: Path,
        starting_tree: Path,
        run_id: str,
        workdir: Path,
        model: str = "GAMMA",
        seed: int = 1,
    ) -> list[str]:
        return [
            *self.launcher(),
            "-s", str(binary),
            "-t", str(starting_tree),
            "-m", model,
            "-n", run_id,
            "-p", str(seed),
            "-w", str(workdir.resolve()) + "/",
        ]

    @staticmethod
    def result_file(workdir: Path, run_id: str) -> Path:
        return workdir / f"ExaML_result.{run_id}"

    @staticmethod
    def intermediate_files(workdir: Path, run_id: str) -> list[Path]:
        names = [f"ExaML_{kind}.{run_id}" for kind in ("info", "log", "modelFile", "binaryCheckpoint0")]
        names.append(f"{run_id}.binary")
        return [workdir / n for n in names]
