"""TreeAnnotator wrapper (BEAST package) for summarising tree samples."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Literal

from supersmart.external.base import ExternalTool

Heights = Literal["keep", "median", "mean", "ca"]


class TreeAnnotator(ExternalTool):
    """Builds a maximum clade credibility tree from a NEXUS tree sample.

    Example:
        >>> TreeAnnotator().run_or_raise(
        ...     infile=Path("sample.nex"), outfile=Path("mcc.nex"), burnin=100,
        ... )
    """

    TOOL_NAME: ClassVar[str] = "treeannotator"
    INSTALL_HINT: ClassVar[str] = "conda install -c bioconda beast"

    def build_command(
        self,
        *,
        infile: Path,
        outfile: Path,
        burnin: int = 0,
        heights: Heights = "median",
        limit: float = 0.0,
    ) -> list[str]:
        return [
            str(self.executable_path()),
            "-burnin", str(burnin),
            "-heights", heights,
            "-limit", f"{limit:g}",
            str(infile),
            str(outfile),
        ]
