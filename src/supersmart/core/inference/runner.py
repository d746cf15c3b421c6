"""
Driving inference engines over replicates and clades.

``infer_backbone`` runs the bootstrap replicates of the backbone search
(bbinfer); ``infer_clade`` samples and summarises the tree of one clade
directory (cladeinfer). Independent units run on the worker pool and their
outputs are combined in input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from supersmart.core.decomposition.clades import read_manifest
from supersmart.core.exceptions import InferenceFailure, MissingInputFileError
from supersmart.core.inference.bootstrap import bootstrap_matrix
from supersmart.core.inference.engines import InferenceEngine, get_engine
from supersmart.core.io_utils import atomic_write, require_input
from supersmart.core.parallel import WorkerPool
from supersmart.core.phylogeny.consensus import consense
from supersmart.core.phylogeny.tree_io import read_trees, write_trees

if TYPE_CHECKING:
    from supersmart.models.config import PipelineConfig

logger = logging.getLogger(__name__)

MIN_SAMPLING_FREQ = 1000


@dataclass(frozen=True)
class Replicate:
    index: int
    matrix: Path
    outfile: Path
    seed: int


def _replicates(matrix: Path, outfile: Path, engine: InferenceEngine, config: PipelineConfig) -> list[Replicate]:
    resample = config.bootstrap > 1 and not engine.is_bayesian
    if config.bootstrap > 1 and engine.is_bayesian:
        logger.info("%s samples trees itself, not resampling the matrix", engine.TAG)
    replicates = []
    for i in range(1, config.bootstrap + 1):
        source = matrix
        if resample:
            source = outfile.with_name(f"{matrix.stem}.bootstrap.{i}.phy")
        replicates.append(
            Replicate(
                index=i,
                matrix=source,
                outfile=outfile.with_name(f"{outfile.name}.{i}"),
                seed=config.random_seed + i,
            )
        )
    return replicates


def _run_replicate(
    rep: Replicate,
    *,
    matrix: Path,
    workdir: Path,
    config: PipelineConfig,
    tag: str,
    starting_tree: Path | None,
    cleanup: bool,
) -> Path:
    if rep.matrix != matrix:
        bootstrap_matrix(matrix, rep.matrix, rep.seed)
    engine = get_engine(tag, config.model_copy(update={"random_seed": rep.seed}))
    try:
        return engine.infer(
            rep.matrix,
            workdir,
            replicate=rep.index,
            outfile=rep.outfile,
            starting_tree=starting_tree,
            cleanup=cleanup,
        )
    finally:
        if cleanup and rep.matrix != matrix and rep.matrix.exists():
            rep.matrix.unlink()


def infer_backbone(
    matrix: Path,
    outfile: Path,
    config: PipelineConfig,
    *,
    workdir: Path | None = None,
    starting_tree: Path | None = None,
    cleanup: bool = False,
    pool: WorkerPool | None = None,
) -> int:
    """
    Infer backbone trees and concatenate them into ``outfile``.

    Each replicate writes ``<outfile>.<i>``; those files are concatenated in
    replicate order. Failed replicates are skipped with a warning, unless
    there is only one.

    Returns:
        Number of trees written.

    Raises:
        InferenceFailure: If the only replicate, or every replicate, fails.
        UnknownEngineError: If ``inference_tool`` is not registered.
    """
    require_input(matrix, "supermatrix")
    engine = get_engine(config.inference_tool, config)
    workdir = workdir or outfile.parent
    pool = pool or WorkerPool.from_config(config)
    replicates = _replicates(matrix, outfile, engine, config)
    logger.info(
        "Running %d %s replicate(s) on %s", len(replicates), engine.TAG, matrix.name,
    )

    run_one = partial(
        _run_replicate,
        matrix=matrix,
        workdir=workdir,
        config=config,
        tag=engine.TAG,
        starting_tree=starting_tree,
        cleanup=cleanup,
    )
    outcomes = pool.map_results(run_one, replicates, label="replicate")
    produced = [o.value for o in outcomes if o.ok]
    if len(replicates) == 1 and not outcomes[0].ok:
        raise outcomes[0].error  # type: ignore[misc]
    if not produced:
        raise InferenceFailure(engine.TAG, None, f"all {len(replicates)} replicates failed")
    failed = len(replicates) - len(produced)
    if failed:
        logger.warning("%d of %d replicates failed and were left out", failed, len(replicates))

    count = 0
    with atomic_write(outfile) as handle:
        for path in produced:
            for line in path.read_text().splitlines():
                if line.strip():
                    handle.write(line.strip() + "\n")
                    count += 1
    if cleanup:
        for path in produced:
            path.unlink()
    logger.info("Wrote %d tree(s) to %s", count, outfile)
    return count


def sampling_frequencies(ngens: int, sfreq: int | None = None, lfreq: int | None = None) -> tuple[int, int]:
    """Sampling and logging frequency, defaulting to a hundredth of ``ngens``."""
    default = max(1, ngens // 100)
    sfreq = sfreq or default
    lfreq = lfreq or default
    for name, value in (("sampling", sfreq), ("logging", lfreq)):
        if value < MIN_SAMPLING_FREQ:
            logger.warning(
                "A %s frequency of %d is very low and will produce large output files", name, value,
            )
    return sfreq, lfreq


@dataclass(frozen=True)
class CladeInference:
    """Tree sample and consensus written for one clade."""

    clade_id: str
    trees: Path
    consensus: Path
    n_trees: int


def infer_clade(
    directory: Path,
    config: PipelineConfig,
    *,
    engine_tag: str = "exabayes",
    ngens: int | None = None,
    sfreq: int | None = None,
    lfreq: int | None = None,
    cleanup: bool = False,
) -> CladeInference:
    """
    Infer the tree of one clade from its ``clade<N>.phy`` matrix.

    Writes the engine's tree sample to ``clade<N>.trees`` and its majority
    consensus, after burn-in, to ``clade<N>.dnd``.

    Raises:
        MissingInputFileError: If the clade was not merged yet.
        InferenceFailure: If the engine fails.
    """
    clade = read_manifest(directory)
    matrix = directory / f"{clade.clade_id}.phy"
    if not matrix.exists():
        raise MissingInputFileError(matrix, "clade matrix (run clademerge first)")

    engine = get_engine(engine_tag, config)
    ngens = ngens or config.exabayes_numgens
    sfreq, lfreq = sampling_frequencies(ngens, sfreq, lfreq)
    trees_file = directory / f"{clade.clade_id}.trees"
    engine.infer(
        matrix,
        directory,
        outfile=trees_file,
        cleanup=cleanup,
        numgens=ngens,
        samplefreq=sfreq,
        diagfreq=lfreq,
    )

    trees = read_trees(trees_file)
    # a Bayesian sample already had its burn-in removed per run
    burnin = 0.0 if engine.is_bayesian else config.burnin
    result = consense(trees, burnin=burnin if len(trees) > 1 else 0.0)
    consensus = directory / f"{clade.clade_id}.dnd"
    write_trees([result.tree], consensus)
    logger.info("%s: consensus of %d trees written to %s", clade.clade_id, result.n_trees, consensus.name)
    return CladeInference(
        clade_id=clade.clade_id, trees=trees_file, consensus=consensus, n_trees=result.n_trees,
    )


def infer_clades(
    directories: list[Path],
    config: PipelineConfig,
    *,
    pool: WorkerPool | None = None,
    **options: object,
) -> list[CladeInference]:
    """Run ``infer_clade`` on every directory; failed clades are skipped."""
    pool = pool or WorkerPool.from_config(config)
    return pool.map(
        partial(infer_clade, config=config, **options),  # type: ignore[arg-type]
        directories,
        label="clade",
    )
