"""
Consensus command: summarise replicate or posterior trees.
"""

from __future__ import annotations

from pathlib import Path

import typer

from supersmart.cli.utils import (
    CONFIG_OPTION,
    QUIET_OPTION,
    VERBOSE_OPTION,
    WORKDIR_OPTION,
    QuietConsole,
    console,
    fail,
    make_context,
    report_error,
    spinner_progress,
)
from supersmart.core.constants import DEFAULT_CHRONOGRAM, DEFAULT_CONSENSUS_TREE
from supersmart.core.exceptions import SupersmartError
from supersmart.core.io_utils import atomic_write
from supersmart.core.phylogeny.tree_io import read_trees, to_nexus, write_trees


def consense(
    infile: Path = typer.Option(
        Path(DEFAULT_CHRONOGRAM), "--infile", "-i", help="Trees to summarise (Newick or NEXUS)",
    ),
    outfile: Path = typer.Option(
        Path(DEFAULT_CONSENSUS_TREE),
        "--outfile",
        "-o",
        help="Consensus tree to write; NEXUS for .nex/.nexus, otherwise Newick",
    ),
    burnin: float | None = typer.Option(
        None, "--burnin", "-b", min=0.0, max=0.99, help="Fraction of leading trees to discard",
    ),
    method: str = typer.Option(
        "majority", "--method", "-m", help="majority (Bio.Phylo) or treeannotator",
    ),
    heights: str = typer.Option(
        "median", "--heights", help="TreeAnnotator node heights: keep, median, mean or ca",
    ),
    limit: float = typer.Option(
        0.0, "--limit", "-l", min=0.0, max=1.0, help="Minimum support for a clade",
    ),
    prob: bool = typer.Option(
        False, "--prob", "-p", help="Write support as probabilities instead of tree counts",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Build a consensus tree from a tree sample.

    Examples:

        smrt consense -i chronogram.dnd -b 0.2

        smrt consense -i chronogram.dnd -m treeannotator --heights mean --prob
    """
    from supersmart.core.phylogeny.consensus import consense as build_consensus
    from supersmart.core.phylogeny.consensus import support_as_counts
    from supersmart.external.treeannotator import TreeAnnotator

    if method not in ("majority", "treeannotator"):
        fail(f"Unknown consensus method '{method}'")
    if heights not in ("keep", "median", "mean", "ca"):
        fail(f"Unknown heights option '{heights}'")

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, burnin=burnin)
    out = QuietConsole(console, quiet=quiet)
    try:
        trees = read_trees(ctx.path(infile))
        out.print(f"[bold]Trees:[/bold] {len(trees)}")
        with spinner_progress("Building consensus...", console, quiet):
            result = build_consensus(
                trees,
                burnin=ctx.config.burnin,
                method=method,  # type: ignore[arg-type]
                limit=limit,
                heights=heights,  # type: ignore[arg-type]
                tool=TreeAnnotator(ctx.config.treeannotator_bin) if method == "treeannotator" else None,
            )
    except SupersmartError as e:
        report_error(e)

    tree = result.tree
    if not prob:
        support_as_counts(tree, result.n_trees)

    path = ctx.path(outfile)
    if path.suffix.lower() in (".nex", ".nexus"):
        with atomic_write(path) as handle:
            handle.write(to_nexus([tree]))
    else:
        write_trees([tree], path)
    out.print(f"[bold green]Consensus of {result.n_trees} trees written to {path}[/bold green]")
