"""
treePL wrapper for penalized-likelihood divergence time estimation.

treePL takes a single argument, a configuration file naming the input
tree, the calibration constraints and the output file.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

from supersmart.external.base import ExternalTool


class TreePL(ExternalTool):
    """Wrapper for treePL."""

    TOOL_NAME: ClassVar[str] = "treePL"
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = ("treepl",)
    INSTALL_HINT: ClassVar[str] = "conda install -c bioconda treepl"

    def build_command(self, *, config_file: Path) -> list[str]:
        return [str(self.executable_path()), str(config_file)]


def write_config(
    path: Path,
    *,
    treefile: Path,
    outfile: Path,
    numsites: int,
    calibration_lines: str,
    smooth: float = 100.0,
    nthreads: int = 1,
    seed: int = 1,
) -> Path:
    """Write a treePL configuration file and return its path."""
    header = [
        f"treefile = {treefile}",
        f"smooth = {smooth:g}",
        f"numsites = {numsites}",
        f"outfile = {outfile}",
        f"nthreads = {nthreads}",
        f"seed = {seed}",
    ]
    text = "\n".join(header) + "\n"
    if calibration_lines:
        text += calibration_lines.rstrip("\n") + "\n"
    path.write_text(text)
    return path
