"""PhyML wrapper for maximum-likelihood inference of small matrices."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

from supersmart.external.base import ExternalTool


class PhyML(ExternalTool):
    """Wrapper for PhyML.

    PhyML writes ``<matrix>_phyml_tree`` (``.txt`` in newer releases) next
    to the input matrix. Bootstrapping is disabled; replicates are produced
    by resampling the matrix instead.
    """

    TOOL_NAME: ClassVar[str] = "phyml"
    INSTALL_HINT: ClassVar[str] = "conda install -c bioconda phyml"

    def build_command(
        self,
        *,
        matrix: Path,
        model: str = "GTR",
        seed: int = 1,
        starting_tree: Path | None = None,
    ) -> list[str]:
        cmd = [
            str(self.executable_path()),
            "-i", str(matrix),
            "-d", "nt",
            "-m", model,
            "-o", "tlr",
            "-b", "0",
            "--r_seed", str(seed),
            "--no_memory_check",
        ]
        if starting_tree is not None:
            cmd.extend(["-u", str(starting_tree)])
        return cmd

    @staticmethod
    def tree_file(matrix: Path) -> Path:
        """The tree PhyML wrote for ``matrix``, whichever naming was used."""
        for suffix in ("_phyml_tree.txt", "_phyml_tree"):
            candidate = matrix.with_name(matrix.name + suffix)
            if candidate.exists():
                return candidate
        return matrix.with_name(matrix.name + "_phyml_tree.txt")

    @staticmethod
    def intermediate_files(matrix: Path) -> list[Path]:
        return [
            matrix.with_name(matrix.name + suffix)
            for suffix in ("_phyml_stats.txt", "_phyml_stats", "_phyml_tree.txt", "_phyml_tree")
        ]
