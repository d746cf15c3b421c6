"""
Interchangeable tree inference engines.

Every engine follows the same life cycle:

    engine = get_engine("raxml", config)
    handle = engine.create(workdir, replicate=1)
    engine.configure(handle)
    tree_file = engine.run(handle, matrix, starting_tree)
    engine.cleanup(handle)

``run`` either returns the path of a non-empty tree file or raises
InferenceFailure. Replicates get their own run id and output file, so they
can run concurrently in the same working directory. Engines are looked up
by tag in a closed registry.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from supersmart.core.exceptions import InferenceFailure, UnknownEngineError
from supersmart.core.inference.bootstrap import read_phylip
from supersmart.core.inference.starting import make_usertree
from supersmart.core.io_utils import atomic_write
from supersmart.core.phylogeny.tree_io import parse_nexus_trees, to_newick, write_trees
from supersmart.external import RAxML, ExaBayes, ExaML, ExaMLParser, PhyML
from supersmart.external import exabayes as exabayes_config
from supersmart.external.base import validate_path_safe
from supersmart.models.config import PipelineConfig

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Tree

    from supersmart.external.base import ToolResult

logger = logging.getLogger(__name__)


@dataclass
class EngineRun:
    """Handle for one engine invocation.

    Attributes:
        engine: Engine tag.
        workdir: Directory for the engine's files.
        replicate: Bootstrap replicate or independent run index.
        run_id: Name that keys every file of this invocation.
        outfile: Where the resulting tree file is placed.
        settings: Effective run settings, filled in by ``configure``.
    """

    engine: str
    workdir: Path
    replicate: int
    run_id: str
    outfile: Path
    settings: dict[str, Any] = field(default_factory=dict)
    scratch: list[Path] = field(default_factory=list)


class InferenceEngine(ABC):
    """Common contract of the tree inference backends."""

    TAG: ClassVar[str]
    is_bayesian: ClassVar[bool] = False

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    def run_id(self, replicate: int) -> str:
        return f"{self.TAG}-run-{os.getpid()}-{replicate}"

    def create(self, workdir: Path, *, replicate: int = 1, outfile: Path | None = None) -> EngineRun:
        """Allocate the file namespace of one invocation."""
        workdir = workdir.resolve()
        workdir.mkdir(parents=True, exist_ok=True)
        run_id = self.run_id(replicate)
        return EngineRun(
            engine=self.TAG,
            workdir=workdir,
            replicate=replicate,
            run_id=run_id,
            outfile=outfile or workdir / f"{run_id}.dnd",
        )

    def configure(self, handle: EngineRun, config: PipelineConfig | None = None, **settings: Any) -> EngineRun:
        """
        Fill in run settings from the configuration.

        Keyword arguments override individual settings; None values are
        ignored.
        """
        handle.settings.update(self.settings_from(config or self.config))
        handle.settings.update({k: v for k, v in settings.items() if v is not None})
        logger.debug("%s settings for replicate %d: %s", self.TAG, handle.replicate, handle.settings)
        return handle

    @abstractmethod
    def settings_from(self, config: PipelineConfig) -> dict[str, Any]:
        ...

    @abstractmethod
    def run(self, handle: EngineRun, matrix: Path, starting_tree: Path | None = None) -> Path:
        """Run the engine on a relaxed phylip matrix and return the tree file."""
        ...

    @abstractmethod
    def intermediate_files(self, handle: EngineRun) -> list[Path]:
        ...

    def cleanup(self, handle: EngineRun) -> None:
        """Remove intermediate files; the output tree is kept."""
        for path in [*self.intermediate_files(handle), *handle.scratch]:
            if path.exists() and path != handle.outfile:
                path.unlink()
                logger.debug("Removed %s", path)

    def infer(
        self,
        matrix: Path,
        workdir: Path,
        *,
        replicate: int = 1,
        outfile: Path | None = None,
        starting_tree: Path | None = None,
        cleanup: bool = True,
        **settings: Any,
    ) -> Path:
        """create, configure, run and (optionally) clean up in one call."""
        matrix = validate_path_safe(matrix, must_exist=True)
        if starting_tree is not None:
            starting_tree = validate_path_safe(starting_tree, must_exist=True)
        handle = self.create(workdir, replicate=replicate, outfile=outfile)
        self.configure(handle, **settings)
        try:
            return self.run(handle, matrix, starting_tree)
        finally:
            if cleanup:
                self.cleanup(handle)

    def _check(self, handle: EngineRun, result: ToolResult, produced: Path) -> None:
        """
        Raises:
            InferenceFailure: On a non-zero exit or a missing or empty output.
        """
        if not result.success:
            raise InferenceFailure(self.TAG, result.return_code, result.tail(5))
        if not produced.exists() or produced.stat().st_size == 0:
            raise InferenceFailure(self.TAG, result.return_code, f"no tree written to {produced.name}")

    def _publish(self, handle: EngineRun, produced: Path) -> Path:
        with atomic_write(handle.outfile) as out:
            out.write(produced.read_text())
        logger.info("%s replicate %d: tree written to %s", self.TAG, handle.replicate, handle.outfile)
        return handle.outfile


class RAxMLEngine(InferenceEngine):
    """Maximum likelihood search with RAxML."""

    TAG = "raxml"

    def settings_from(self, config: PipelineConfig) -> dict[str, Any]:
        return {
            "executable": config.raxml_bin,
            "model": config.raxml_model,
            "runs": config.raxml_runs,
            "threads": config.nodes,
            "seed": config.random_seed,
        }

    def run(self, handle: EngineRun, matrix: Path, starting_tree: Path | None = None) -> Path:
        s = handle.settings
        tool = RAxML(s.get("executable"))
        result = tool.run(
            matrix=matrix.resolve(),
            run_id=handle.run_id,
            workdir=handle.workdir,
            model=s.get("model", "GTRGAMMA"),
            seed=s.get("seed", 1),
            runs=s.get("runs", 1),
            threads=s.get("threads", 1),
            starting_tree=starting_tree.resolve() if starting_tree else None,
            cwd=handle.workdir,
        )
        produced = RAxML.best_tree(handle.workdir, handle.run_id)
        self._check(handle, result, produced)
        return self._publish(handle, produced)

    def intermediate_files(self, handle: EngineRun) -> list[Path]:
        return RAxML.intermediate_files(handle.workdir, handle.run_id)


class ExaMLEngine(InferenceEngine):
    """Maximum likelihood search with ExaML over MPI.

    The matrix is converted with ``parse-examl`` first. Without a starting
    tree a random one over the matrix taxa is generated.
    """

    TAG = "examl"

    def settings_from(self, config: PipelineConfig) -> dict[str, Any]:
        return {
            "executable": config.examl_bin,
            "parser": config.examl_parser_bin,
            "mpirun": config.mpirun_bin,
            "nodes": config.nodes,
            "model": config.examl_model,
            "seed": config.random_seed,
        }

    def run(self, handle: EngineRun, matrix: Path, starting_tree: Path | None = None) -> Path:
        s = handle.settings
        parser = ExaMLParser(s.get("parser"))
        parsed = parser.run(matrix=matrix.resolve(), run_id=handle.run_id, cwd=handle.workdir)
        binary = ExaMLParser.binary_file(handle.workdir, handle.run_id)
        self._check(handle, parsed, binary)

        if starting_tree is None:
            starting_tree = handle.workdir / f"{handle.run_id}.user.dnd"
            tree = make_usertree(list(read_phylip(matrix)), seed=s.get("seed", 1))
            starting_tree.write_text(to_newick(tree) + "\n")
            handle.scratch.append(starting_tree)

        tool = ExaML(s.get("executable"), mpirun=s.get("mpirun", "mpirun"), nodes=s.get("nodes", 1))
        result = tool.run(
            binary=binary,
            starting_tree=starting_tree.resolve(),
            run_id=handle.run_id,
            workdir=handle.workdir,
            model=s.get("model", "GAMMA"),
            seed=s.get("seed", 1),
            cwd=handle.workdir,
        )
        produced = ExaML.result_file(handle.workdir, handle.run_id)
        self._check(handle, result, produced)
        return self._publish(handle, produced)

    def intermediate_files(self, handle: EngineRun) -> list[Path]:
        return [
            *ExaML.intermediate_files(handle.workdir, handle.run_id),
            ExaML.result_file(handle.workdir, handle.run_id),
        ]


class ExaBayesEngine(InferenceEngine):
    """Bayesian MCMC sampling with ExaBayes.

    The output file holds the sampled topologies of all runs, each after
    dropping its burn-in, one Newick tree per line.
    """

    TAG = "exabayes"
    is_bayesian = True

    def settings_from(self, config: PipelineConfig) -> dict[str, Any]:
        return {
            "executable": config.exabayes_bin,
            "mpirun": config.mpirun_bin,
            "nodes": config.nodes,
            "numruns": config.exabayes_numruns,
            "numchains": config.exabayes_numchains,
            "numgens": config.exabayes_numgens,
            "samplefreq": config.exabayes_samplefreq,
            "diagfreq": None,
            "burnin": config.burnin,
            "seed": config.random_seed,
        }

    def run(self, handle: EngineRun, matrix: Path, starting_tree: Path | None = None) -> Path:
        s = handle.settings
        if starting_tree is not None:
            logger.info("ExaBayes starts from parsimony trees, ignoring %s", starting_tree)

        config_file = exabayes_config.write_config(
            handle.workdir / f"{handle.run_id}.nex",
            num_runs=s.get("numruns", 4),
            num_chains=s.get("numchains", 2),
            num_gens=s.get("numgens", 100_000),
            sample_freq=s.get("samplefreq", 100),
            diag_freq=s.get("diagfreq"),
        )
        tool = ExaBayes(s.get("executable"), mpirun=s.get("mpirun", "mpirun"), nodes=s.get("nodes", 1))
        result = tool.run(
            matrix=matrix.resolve(),
            run_id=handle.run_id,
            config_file=config_file,
            workdir=handle.workdir,
            seed=s.get("seed", 1),
            cwd=handle.workdir,
        )
        if not result.success:
            raise InferenceFailure(self.TAG, result.return_code, result.tail(5))

        files = ExaBayes.topology_files(handle.workdir, handle.run_id)
        if not files:
            raise InferenceFailure(self.TAG, result.return_code, "no topology files written")
        trees = self.collect_samples(files, s.get("burnin", 0.0))
        if not trees:
            raise InferenceFailure(self.TAG, result.return_code, "no trees sampled after burn-in")
        write_trees(trees, handle.outfile)
        logger.info("exabayes: %d sampled trees written to %s", len(trees), handle.outfile)
        return handle.outfile

    @staticmethod
    def collect_samples(files: list[Path], burnin: float) -> list[Tree]:
        """Trees of every topology file, each without its leading burn-in."""
        trees = []
        for path in files:
            sample = parse_nexus_trees(path.read_text())
            skip = int(burnin * len(sample))
            logger.debug("%s: %d trees, skipping %d", path.name, len(sample), skip)
            trees.extend(sample[skip:])
        return trees

    def intermediate_files(self, handle: EngineRun) -> list[Path]:
        return ExaBayes.intermediate_files(handle.workdir, handle.run_id)


class PhyMLEngine(InferenceEngine):
    """Maximum likelihood search with PhyML.

    PhyML writes next to its input, so the matrix is copied into the
    working directory under the run id first.
    """

    TAG = "phyml"

    def settings_from(self, config: PipelineConfig) -> dict[str, Any]:
        return {
            "executable": config.phyml_bin,
            "model": config.phyml_model,
            "seed": config.random_seed,
        }

    def _local_matrix(self, handle: EngineRun) -> Path:
        return handle.workdir / f"{handle.run_id}.phy"

    def run(self, handle: EngineRun, matrix: Path, starting_tree: Path | None = None) -> Path:
        s = handle.settings
        local = self._local_matrix(handle)
        shutil.copyfile(matrix, local)
        tool = PhyML(s.get("executable"))
        result = tool.run(
            matrix=local,
            model=s.get("model", "GTR"),
            seed=s.get("seed", 1),
            starting_tree=starting_tree.resolve() if starting_tree else None,
            cwd=handle.workdir,
        )
        produced = PhyML.tree_file(local)
        self._check(handle, result, produced)
        return self._publish(handle, produced)

    def intermediate_files(self, handle: EngineRun) -> list[Path]:
        local = self._local_matrix(handle)
        return [local, *PhyML.intermediate_files(local)]


ENGINES: dict[str, type[InferenceEngine]] = {
    "raxml": RAxMLEngine,
    "examl": ExaMLEngine,
    "exabayes": ExaBayesEngine,
    "phyml": PhyMLEngine,
}


def get_engine(tag: str, config: PipelineConfig | None = None) -> InferenceEngine:
    """
    Instantiate the engine registered under ``tag`` (case-insensitive).

    Raises:
        UnknownEngineError: If no engine has that tag.
    """
    cls = ENGINES.get(tag.strip().lower())
    if cls is None:
        raise UnknownEngineError(tag, list(ENGINES))
    return cls(config)
