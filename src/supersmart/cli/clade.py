"""
Clade commands.

- bbdecompose: split the calibrated backbone into clade directories
- clademerge: build the matrices of every clade
- cladeinfer: infer a tree per clade
- cladegraft: graft the clade trees onto the backbone
"""

from __future__ import annotations

import logging
from functools import partial
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
from supersmart.core.constants import (
    DEFAULT_ALIGNMENT_LIST,
    DEFAULT_CLADE_MARKERS,
    DEFAULT_CONSENSUS_TREE,
    DEFAULT_FINAL_TREE,
    DEFAULT_TAXA_FILE,
)
from supersmart.core.decomposition.clades import clade_directories, read_manifest
from supersmart.core.exceptions import GraftError, SupersmartError
from supersmart.core.phylogeny.tree_io import read_tree, write_trees

logger = logging.getLogger(__name__)


def bbdecompose(
    backbone: Path = typer.Option(
        Path(DEFAULT_CONSENSUS_TREE), "--backbone", "-b", help="Calibrated backbone tree",
    ),
    alignments: Path = typer.Option(
        Path(DEFAULT_ALIGNMENT_LIST), "--alignments", "-a", help="List file of aligned FASTA clusters",
    ),
    taxa: Path = typer.Option(Path(DEFAULT_TAXA_FILE), "--taxafile", "-t", help="Taxa table"),
    summary: Path = typer.Option(
        Path(DEFAULT_CLADE_MARKERS), "--summary", "-s", help="Clade marker table to write",
    ),
    add_outgroup: bool = typer.Option(
        False, "--outgroup", "-g", help="Add sister taxa of each clade as outgroup",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Decompose the backbone into clades and write their alignments.

    Each clade is written to ``clade<N>/`` in the working directory, with
    one FASTA file per selected marker and a ``clade.yaml`` manifest.
    """
    from supersmart.core.decomposition import (
        decompose_backbone,
        select_clades,
        write_clade,
        write_clade_markers,
    )
    from supersmart.models.alignment import load_clusters, read_alignment_list

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa)
    out = QuietConsole(console, quiet=quiet)
    try:
        tree = read_tree(ctx.path(backbone))
        clades = decompose_backbone(tree, ctx.require_taxa(), ctx.classification())
        out.print(f"[bold]Clades:[/bold] {len(clades)}")
        with spinner_progress("Selecting clade markers...", console, quiet):
            clusters = load_clusters(read_alignment_list(ctx.path(alignments)))
            selections = select_clades(tree, clades, clusters, ctx.config, add_outgroup=add_outgroup)
            for selection in selections:
                write_clade(selection, ctx.workdir)
        write_clade_markers(selections, ctx.path(summary))
    except SupersmartError as e:
        report_error(e)

    if not selections:
        fail("No clade has enough markers")
    out.print(f"[bold green]Wrote {len(selections)} clade(s) to {ctx.workdir}[/bold green]")


def clademerge(
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Concatenate the alignments of every clade directory into its matrices."""
    from supersmart.core.decomposition import merge_clade

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet)
    out = QuietConsole(console, quiet=quiet)
    directories = clade_directories(ctx.workdir)
    if not directories:
        fail(f"No clade directories in {ctx.workdir}; run bbdecompose first")

    with spinner_progress(f"Merging {len(directories)} clade(s)...", console, quiet):
        merged = ctx.pool().map(partial(merge_clade, config=ctx.config), directories, label="clade")
    written = [m for m in merged if m is not None]
    out.print(f"[bold green]Wrote matrices for {len(written)} of {len(directories)} clade(s)[/bold green]")


def cladeinfer(
    inference_tool: str = typer.Option(
        "exabayes", "--inferencetool", "-i", help="Engine: raxml, examl, exabayes or phyml",
    ),
    ngens: int | None = typer.Option(None, "--ngens", "-n", min=1, help="MCMC generations"),
    sfreq: int | None = typer.Option(None, "--sfreq", "-s", min=1, help="Sampling frequency"),
    lfreq: int | None = typer.Option(None, "--lfreq", "-l", min=1, help="Logging frequency"),
    cleanup: bool = typer.Option(False, "--cleanup", "-x", help="Remove intermediate files"),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Infer the tree of every clade.

    Writes ``clade<N>.trees`` and the consensus ``clade<N>.dnd`` into each
    clade directory. Clades whose inference fails are skipped.
    """
    from supersmart.core.inference import get_engine, infer_clades

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet)
    out = QuietConsole(console, quiet=quiet)
    try:
        get_engine(inference_tool)
    except SupersmartError as e:
        report_error(e)
    directories = clade_directories(ctx.workdir)
    if not directories:
        fail(f"No clade directories in {ctx.workdir}; run bbdecompose first")

    with spinner_progress(f"Inferring {len(directories)} clade tree(s)...", console, quiet):
        results = infer_clades(
            directories,
            ctx.config,
            pool=ctx.pool(),
            engine_tag=inference_tool,
            ngens=ngens,
            sfreq=sfreq,
            lfreq=lfreq,
            cleanup=cleanup,
        )
    if not results:
        fail("No clade tree could be inferred")
    out.print(f"[bold green]Inferred {len(results)} of {len(directories)} clade tree(s)[/bold green]")


def cladegraft(
    backbone: Path = typer.Option(
        Path(DEFAULT_CONSENSUS_TREE), "--backbone", "-b", help="Calibrated backbone tree",
    ),
    taxa: Path = typer.Option(Path(DEFAULT_TAXA_FILE), "--taxafile", "-t", help="Taxa table"),
    outfile: Path = typer.Option(Path(DEFAULT_FINAL_TREE), "--outfile", "-o", help="Final tree to write"),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Graft the clade trees onto the backbone and write the final tree.

    Tips are labelled with taxon names; identifiers are kept as
    ``[&ti=<id>]`` comments.
    """
    from supersmart.core.phylogeny.grafting import CladeTree, graft_all, prepare_clade_tree

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa)
    out = QuietConsole(console, quiet=quiet)
    try:
        tree = read_tree(ctx.path(backbone))
        clades = []
        for directory in clade_directories(ctx.workdir):
            clade = read_manifest(directory)
            path = directory / f"{clade.clade_id}.dnd"
            if not path.exists():
                logger.warning("%s has no inferred tree, skipping", clade.clade_id)
                continue
            try:
                rooted = prepare_clade_tree(read_tree(path), clade.outgroup)
            except GraftError as e:
                logger.warning("Skipping %s: %s", clade.clade_id, e.message)
                continue
            clades.append(CladeTree(clade.clade_id, clade.exemplars, rooted, clade.taxa))

        with spinner_progress(f"Grafting {len(clades)} clade(s)...", console, quiet):
            report = graft_all(tree, clades, taxa=ctx.taxa)
    except SupersmartError as e:
        report_error(e)

    path = ctx.path(outfile)
    write_trees([report.tree], path)
    out.print(f"[bold]Grafted:[/bold] {len(report.grafted)}")
    if report.skipped:
        out.print(f"[yellow]Skipped:[/yellow] {', '.join(report.skipped)}")
    if report.attached:
        out.print(f"[yellow]Attached beside their genus:[/yellow] {len(report.attached)}")
    out.print(f"[bold green]Final tree with {len(report.tree.get_terminals())} tips written to {path}[/bold green]")
