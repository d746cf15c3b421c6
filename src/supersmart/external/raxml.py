"""
RAxML wrapper for maximum-likelihood tree search.

RAxML writes its results as ``RAxML_<kind>.<run id>`` files in the
directory given with ``-w``; the best-scoring tree is ``RAxML_bestTree``.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

from supersmart.external.base import ExternalTool


class RAxML(ExternalTool):
    """Wrapper for the RAxML tree search.

    Example:
        >>> raxml = RAxML()
        >>> raxml.run_or_raise(
        ...     matrix=Path("supermatrix.phy"), run_id="bb-1", workdir=Path("."),
        ... )
        >>> RAxML.best_tree(Path("."), "bb-1")
        PosixPath('RAxML_bestTree.bb-1')
    """

    TOOL_NAME: ClassVar[str] = "raxmlHPC"
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = ("raxmlHPC-PTHREADS", "raxmlHPC-SSE3")
    INSTALL_HINT: ClassVar[str] = "conda install -c bioconda raxml"

    def build_command(
        self,
        *,
        matrix: Path,
        run_id: str,
        workdir: Path,
        model: str = "GTRGAMMA",
        seed: int = 1,
        runs: int = 1,
        threads: int = 1,
        starting_tree: Path | None = None,
    ) -> list[str]:
        """Build a RAxML search command.

        Args:
            matrix: Relaxed phylip supermatrix.
            run_id: Output suffix (``-n``), unique per replicate.
            workdir: Absolute output directory (``-w``).
            model: Substitution model (``-m``).
            seed: Parsimony random seed (``-p``).
            runs: Number of independent searches (``-N``).
            threads: Threads for PTHREADS builds (``-T``), only passed if > 1.
            starting_tree: Optional starting tree (``-t``).
        """
        cmd = [
            str(self.executable_path()),
            "-s", str(matrix),
            "-n", run_id,
            "-m", model,
            "-p", str(seed),
            "-N", str(runs),
            "-w", str(workdir.resolve()),
        ]
        if threads > 1:
            cmd.extend(["-T", str(threads)])
        if starting_tree is not None:
            cmd.extend(["-t", str(starting_tree)])
        return cmd

    @staticmethod
    def best_tree(workdir: Path, run_id: str) -> Path:
        return workdir / f"RAxML_bestTree.{run_id}"

    @staticmethod
    def intermediate_files(workdir: Path, run_id: str) -> list[Path]:
        """Files RAxML leaves behind for a run, including per-search outputs."""
        fixed = [
            workdir / f"RAxML_{kind}.{run_id}"
            for kind in ("info", "bestTree", "bipartitions", "bipartitionsBranchLabels", "bootstrap")
        ]
        per_run = [
            p
            for kind in ("parsimonyTree", "log", "result")
            for p in workdir.glob(f"RAxML_{kind}.{run_id}.RUN.*")
        ]
        return fixed + sorted(per_run)
