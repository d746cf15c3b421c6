"""
Fossil calibration of backbone trees with treePL.

Each fossil is placed on the MRCA of the tree tips it belongs to (or on
the parent of that MRCA for stem fossils). The resulting calibration table
is deduplicated, stripped of single-taxon points and sorted by minimum age
before it is handed to treePL, which turns each tree into a chronogram.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from supersmart.core.exceptions import CalibrationConflictError, CalibrationError
from supersmart.core.parallel import WorkerPool
from supersmart.core.phylogeny.tree_io import copy_tree, find_terminal, parent_map, read_tree, to_newick
from supersmart.external.treepl import TreePL, write_config
from supersmart.models.calibration import CalibrationPoint, CalibrationTable, FossilRecord

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade, Tree

    from supersmart.models.config import PipelineConfig
    from supersmart.models.taxonomy import TaxaTable

logger = logging.getLogger(__name__)


def resolve_fossil_tips(fossil: FossilRecord, taxa: TaxaTable | None, tips: set[str]) -> list[str]:
    """Tree tips belonging to any of the fossil's calibrated taxa."""
    ids: list[str] = []
    for taxon in fossil.calibrated_taxa:
        if taxon.isdigit():
            ids.append(taxon)
            continue
        found = taxa.lookup_name(taxon) if taxa is not None else None
        if found is None:
            logger.warning("Fossil %s: could not resolve calibrated taxon '%s'", fossil.nfos, taxon)
            continue
        ids.append(found)

    members = set(ids)
    if taxa is not None:
        members.update(taxa.species_for(ids))
    return sorted(members & tips)


def _sister_tips(tree: Tree, tip: Clade) -> list[Clade]:
    parent = parent_map(tree).get(tip)
    if parent is None:
        return []
    return [t for c in parent.clades if c is not tip for t in c.get_terminals()]


@dataclass(frozen=True)
class _Placement:
    fossil: FossilRecord
    node: Clade


def _check_nesting(tree: Tree, placements: list[_Placement]) -> None:
    """
    Raise when an ancestral calibration is younger than a nested one.

    Raises:
        CalibrationConflictError: If an ancestor's max age is not older
            than a descendant's min age.
    """
    for outer in placements:
        descendants = {id(c) for c in outer.node.find_clades() if c is not outer.node}
        for inner in placements:
            if inner.fossil.nfos == outer.fossil.nfos or id(inner.node) not in descendants:
                continue
            ancestor_max = outer.fossil.max_age
            descendant_min = inner.fossil.min_age
            if ancestor_max and descendant_min and ancestor_max <= descendant_min:
                raise CalibrationConflictError(outer.fossil.nfos, inner.fossil.nfos)


def create_calibration_table(
    tree: Tree,
    fossils: list[FossilRecord],
    taxa: TaxaTable | None = None,
    *,
    cutoff: float = 0.0,
) -> CalibrationTable:
    """
    Place fossils on a tree and build its calibration table.

    Fossils below the best-practice ``cutoff``, without resolvable taxa,
    without tips in the tree, or whose stem node would lie above the root
    are skipped with a warning.

    Returns:
        Deduplicated table without single-taxon points, sorted by min age.
    """
    tips = {t.name for t in tree.get_terminals() if t.name}
    parents = parent_map(tree)
    placements: list[_Placement] = []

    for fossil in fossils:
        if fossil.best_practice_score < cutoff:
            logger.warning(
                "Quality score of fossil %s (%s) below %s, skipping",
                fossil.nfos, fossil.name, cutoff,
            )
            continue
        names = resolve_fossil_tips(fossil, taxa, tips)
        if not names:
            logger.warning(
                "Could not calibrate fossil %s (%s): taxa %s not in tree",
                fossil.nfos, fossil.name, ", ".join(fossil.calibrated_taxa),
            )
            continue

        nodes = [find_terminal(tree, n) for n in names]
        if len(nodes) == 1:
            logger.info(
                "Fossil %s has only terminal %s to calibrate, adding its sisters",
                fossil.name, names[0],
            )
            nodes.extend(_sister_tips(tree, nodes[0]))
        node = nodes[0] if len(nodes) == 1 else tree.common_ancestor(*nodes)

        if fossil.is_stem:
            node = parents.get(node)
            if node is None:
                logger.warning(
                    "Could not calibrate stem fossil %s (%s): no parent above the crown node",
                    fossil.nfos, fossil.name,
                )
                continue
        placements.append(_Placement(fossil, node))

    _check_nesting(tree, placements)

    table = CalibrationTable(
        rows=tuple(
            CalibrationPoint(
                nfos=p.fossil.nfos,
                name=p.fossil.name,
                taxa=tuple(sorted(t.name for t in p.node.get_terminals())),
                min_age=p.fossil.min_age,
                max_age=p.fossil.max_age,
            )
            for p in placements
        )
    )
    return table.deduplicate().remove_orphan_taxa().sort_by_min_age()


def resolve_polytomies(tree: Tree) -> None:
    """Split multifurcations into zero-length bifurcations, in place."""
    from Bio.Phylo.BaseTree import Clade

    for clade in list(tree.find_clades()):
        while len(clade.clades) > 2:
            first, second = clade.clades[0], clade.clades[1]
            joined = Clade(branch_length=0.0, clades=[first, second])
            clade.clades = [joined, *clade.clades[2:]]


def calibrate_tree(
    tree: Tree,
    table: CalibrationTable,
    *,
    numsites: int,
    config: PipelineConfig,
    nthreads: int = 1,
    tool: TreePL | None = None,
    workdir: Path | None = None,
) -> Tree:
    """
    Run treePL on one tree.

    Raises:
        CalibrationError: If treePL fails or writes no tree.
    """
    tool = tool or TreePL(config.treepl_bin)
    working = copy_tree(tree)
    resolve_polytomies(working)

    with tempfile.TemporaryDirectory(dir=workdir) as tmp:
        intree = Path(tmp) / "input.dnd"
        outtree = Path(tmp) / "output.dnd"
        config_file = Path(tmp) / "treepl.cfg"
        intree.write_text(to_newick(working) + "\n")
        write_config(
            config_file,
            treefile=intree,
            outfile=outtree,
            numsites=numsites,
            calibration_lines=table.to_treepl(),
            smooth=config.treepl_smooth,
            nthreads=nthreads,
            seed=config.random_seed,
        )
        logger.info("Wrote treePL config file to %s", config_file)

        result = tool.run(config_file=config_file, cwd=Path(tmp))
        if not result.success:
            raise CalibrationError(
                message=f"treePL failed with exit code {result.return_code}: {result.tail()}",
                suggestion="Reconsider your calibration points.",
            )
        if not outtree.exists() or outtree.stat().st_size == 0:
            raise CalibrationError(
                message="treePL produced no calibrated tree",
                suggestion="Reconsider your calibration points.",
            )
        return read_tree(outtree)


@dataclass(frozen=True)
class CalibrationRun:
    """Chronograms of a calibration batch with the table of the first tree."""

    chronograms: list[Tree]
    table: CalibrationTable


def _calibrate_one(
    job: tuple[Tree, CalibrationTable],
    *,
    numsites: int,
    config: PipelineConfig,
    nthreads: int,
    workdir: Path | None,
) -> tuple[Tree, CalibrationTable]:
    tree, table = job
    chronogram = calibrate_tree(
        tree, table, numsites=numsites, config=config, nthreads=nthreads, workdir=workdir
    )
    return chronogram, table


def calibrate_trees(
    trees: list[Tree],
    fossils: list[FossilRecord],
    *,
    taxa: TaxaTable | None,
    numsites: int,
    config: PipelineConfig,
    pool: WorkerPool | None = None,
    workdir: Path | None = None,
) -> CalibrationRun:
    """
    Calibrate every tree independently over the worker pool.

    Calibration tables are built first, in the calling thread, so that
    conflicting fossils abort the whole batch. treePL runs that fail are
    logged and their trees left out.

    Raises:
        CalibrationConflictError: If nested fossils contradict each other.
        CalibrationError: If no calibration point could be placed or no
            tree could be calibrated.
    """
    tables = [
        create_calibration_table(t, fossils, taxa, cutoff=config.fossil_best_practice_cutoff)
        for t in trees
    ]
    if not any(len(t) for t in tables):
        raise CalibrationError(
            message="No calibration point could be placed on the trees",
            suggestion="Check the fossil table against the taxa in the tree.",
        )

    pool = pool or WorkerPool.from_config(config)
    nthreads = max(1, config.nodes // max(1, len(trees)))
    fn = partial(
        _calibrate_one,
        numsites=numsites,
        config=config,
        nthreads=nthreads,
        workdir=workdir,
    )
    results = pool.map(fn, list(zip(trees, tables, strict=True)), label="tree calibration")
    if len(results) != len(trees):
        logger.warning("Calibrated %d of %d trees", len(results), len(trees))
    if not results:
        raise CalibrationError(
            message="No tree could be calibrated",
            suggestion="Re-run with --verbose and reconsider your calibration points.",
        )
    return CalibrationRun(chronograms=[c for c, _ in results], table=results[0][1])
