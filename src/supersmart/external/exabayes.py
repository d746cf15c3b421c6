"""
ExaBayes wrapper for Bayesian MCMC tree sampling.

Run settings (number of runs, coupled chains, generations, sampling
frequency) are passed through a small NEXUS ``exabayes`` block written
next to the matrix.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

from supersmart.external.base import MPITool

_INTERMEDIATES = (
    "diagnostics",
    "checkpoint",
    "info",
    "prevCheckpointBackup",
    "ConsensusExtendedMajorityRuleNexus",
)


def write_config(
    path: Path,
    *,
    num_runs: int,
    num_chains: int,
    num_gens: int,
    sample_freq: int,
    diag_freq: int | None = None,
    parsimony_start: bool = True,
) -> Path:
    """Write the ExaBayes run configuration file."""
    lines = [
        "#NEXUS",
        "",
        "begin run;",
        f"  numRuns {num_runs}",
        f"  numCoupledChains {num_chains}",
        f"  numGen {num_gens}",
        f"  samplingFreq {sample_freq}",
        f"  parsimonyStart {'true' if parsimony_start else 'false'}",
    ]
    if diag_freq is not None:
        lines.append(f"  diagFreq {diag_freq}")
    lines.extend(["end;", ""])
    path.write_text("\n".join(lines))
    return path


class ExaBayes(MPITool):
    """Wrapper for the ExaBayes sampler.

    Sampled topologies are written to ``ExaBayes_topologies.<run id>.<i>``,
    one file per independent run.
    """

    TOOL_NAME: ClassVar[str] = "exabayes"
    INSTALL_HINT: ClassVar[str] = "https://cme.h-its.org/exelixis/web/software/exabayes/"

    def build_command(
        self,
        *,
        matrix: Path,
        run_id: str,
        config_file: Path,
        workdir: Path,
        seed: int = 1,
    ) -> list[str]:
        return [
            *self.launcher(),
            "-f", str(matrix),
            "-m", "DNA",
            "-s", str(seed),
            "-n", run_id,
            "-c", str(config_file),
            "-w", str(workdir.resolve()),
        ]

    @staticmethod
    def topology_files(workdir: Path, run_id: str) -> list[Path]:
        return sorted(workdir.glob(f"ExaBayes_topologies.{run_id}*"))

    @staticmethod
    def intermediate_files(workdir: Path, run_id: str) -> list[Path]:
        files = [workdir / f"ExaBayes_{kind}.{run_id}" for kind in _INTERMEDIATES]
        files.extend(sorted(workdir.glob(f"ExaBayes_parameters.{run_id}.*")))
        files.extend(ExaBayes.topology_files(workdir, run_id))
        files.append(workdir / f"{run_id}.nex")
        return files
