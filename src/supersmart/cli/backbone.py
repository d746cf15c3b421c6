"""
Backbone commands.

- bbmerge: select exemplars and markers, write the backbone supermatrix
- bbinfer: infer backbone trees with an inference engine
- bbreroot: root the backbone trees
- bbcalibrate: date the backbone trees with treePL
"""

from __future__ import annotations

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
    DEFAULT_BACKBONE_MARKERS,
    DEFAULT_BACKBONE_TREE,
    DEFAULT_CALIBRATION_TABLE,
    DEFAULT_CHRONOGRAM,
    DEFAULT_REROOTED_TREE,
    DEFAULT_SUPERMATRIX,
    DEFAULT_TAXA_FILE,
)
from supersmart.core.exceptions import SupersmartError
from supersmart.core.phylogeny.tree_io import read_trees, write_trees


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def bbmerge(
    alignments: Path = typer.Option(
        Path(DEFAULT_ALIGNMENT_LIST), "--alignments", "-a", help="List file of aligned FASTA clusters",
    ),
    taxa: Path = typer.Option(Path(DEFAULT_TAXA_FILE), "--taxafile", "-t", help="Taxa table"),
    outfile: Path = typer.Option(
        Path(DEFAULT_SUPERMATRIX), "--outfile", "-o", help="Supermatrix to write",
    ),
    fmt: str = typer.Option("phylip", "--format", "-f", help="Matrix format: phylip, fasta or nexus"),
    markers: Path = typer.Option(
        Path(DEFAULT_BACKBONE_MARKERS), "--markersfile", "-m", help="Marker summary table to write",
    ),
    include_taxa: str | None = typer.Option(
        None, "--include-taxa", "-i", help="Comma-separated names or ids forced into the backbone",
    ),
    exemplars_per_genus: int | None = typer.Option(
        None, "--exemplars", "-e", min=1, help="Exemplars per genus",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Select backbone exemplars and markers and concatenate them.

    Examples:

        smrt bbmerge

        smrt bbmerge -i "Homo sapiens,Pan paniscus" -f nexus -o supermatrix.nex
    """
    from supersmart.core.decomposition import (
        concatenate_clusters,
        select_backbone,
        write_markers_table,
        write_matrix,
    )
    from supersmart.core.decomposition.supermatrix import MATRIX_FORMATS
    from supersmart.core.phylogeny.rerooting import resolve_outgroup
    from supersmart.models.alignment import load_clusters, read_alignment_list

    if fmt not in MATRIX_FORMATS:
        fail(f"Unknown matrix format '{fmt}', expected one of {', '.join(MATRIX_FORMATS)}")
    ctx = make_context(
        workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa,
        backbone_exemplars_per_genus=exemplars_per_genus,
    )
    out = QuietConsole(console, quiet=quiet)
    table = ctx.require_taxa()

    try:
        forced = resolve_outgroup(_split(include_taxa), table)
        with spinner_progress("Reading alignments...", console, quiet):
            clusters = load_clusters(read_alignment_list(ctx.path(alignments)))
        out.print(f"[bold]Alignments:[/bold] {len(clusters)}")
        selection = select_backbone(clusters, table, ctx.config, include_taxa=forced)
        matrix = concatenate_clusters(selection.clusters, selection.exemplars)
        write_matrix(matrix, ctx.path(outfile), fmt)  # type: ignore[arg-type]
        write_markers_table(matrix, ctx.path(markers))
    except SupersmartError as e:
        report_error(e)

    out.print(f"[bold]Exemplars:[/bold] {matrix.ntax}")
    out.print(f"[bold]Markers:[/bold] {len(matrix.partitions)}")
    out.print(f"[bold green]Supermatrix of {matrix.nchar} sites written to {ctx.path(outfile)}[/bold green]")


def bbinfer(
    supermatrix: Path = typer.Option(
        Path(DEFAULT_SUPERMATRIX), "--supermatrix", "-s", help="Relaxed phylip supermatrix",
    ),
    outfile: Path = typer.Option(
        Path(DEFAULT_BACKBONE_TREE), "--outfile", "-o", help="Tree file to write",
    ),
    inference_tool: str | None = typer.Option(
        None, "--inferencetool", "-i", help="Engine: raxml, examl, exabayes or phyml",
    ),
    bootstrap: int | None = typer.Option(None, "--bootstrap", "-b", min=1, help="Number of replicates"),
    starting_tree: Path | None = typer.Option(
        None, "--starttree", "-t", help="Starting tree for engines that take one",
        exists=True, dir_okay=False,
    ),
    cleanup: bool = typer.Option(False, "--cleanup", "-x", help="Remove intermediate files"),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Infer backbone trees from the supermatrix.

    With more than one bootstrap replicate, every replicate runs on a
    column-resampled matrix (except for Bayesian engines) and the trees are
    written to the outfile in replicate order.
    """
    from supersmart.core.inference import infer_backbone

    ctx = make_context(
        workdir, config, verbose=verbose, quiet=quiet,
        inference_tool=inference_tool, bootstrap=bootstrap,
    )
    out = QuietConsole(console, quiet=quiet)
    out.print(f"[bold]Engine:[/bold] {ctx.config.inference_tool}")
    out.print(f"[bold]Replicates:[/bold] {ctx.config.bootstrap}")

    path = ctx.path(outfile)
    try:
        with spinner_progress("Inferring backbone...", console, quiet):
            count = infer_backbone(
                ctx.path(supermatrix),
                path,
                ctx.config,
                workdir=ctx.workdir,
                starting_tree=starting_tree,
                cleanup=cleanup,
                pool=ctx.pool(),
            )
    except SupersmartError as e:
        report_error(e)
    out.print(f"[bold green]Wrote {count} backbone tree(s) to {path}[/bold green]")


def bbreroot(
    backbone: Path = typer.Option(
        Path(DEFAULT_BACKBONE_TREE), "--backbone", "-b", help="Backbone tree file",
    ),
    taxa: Path = typer.Option(Path(DEFAULT_TAXA_FILE), "--taxafile", "-t", help="Taxa table"),
    outfile: Path = typer.Option(
        Path(DEFAULT_REROOTED_TREE), "--outfile", "-o", help="Tree file to write",
    ),
    outgroup: str | None = typer.Option(
        None, "--outgroup", "-g", help="Comma-separated outgroup names or ids",
    ),
    mode: str | None = typer.Option(
        None,
        "--mode",
        "-m",
        help="Rooting: outgroup, taxonomy or midpoint (default: outgroup if given, else taxonomy)",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Root every backbone tree by outgroup, taxonomy or midpoint."""
    from supersmart.core.phylogeny.rerooting import reroot, resolve_outgroup

    mode = mode or ("outgroup" if outgroup else "taxonomy")
    if mode not in ("outgroup", "taxonomy", "midpoint"):
        fail(f"Unknown rooting mode '{mode}'")
    if mode == "outgroup" and not outgroup:
        fail("--outgroup is required for outgroup rooting")

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa)
    out = QuietConsole(console, quiet=quiet)
    try:
        trees = read_trees(ctx.path(backbone))
        names = resolve_outgroup(_split(outgroup), ctx.taxa) if mode == "outgroup" else None
        with spinner_progress(f"Rerooting {len(trees)} tree(s)...", console, quiet):
            rooted = ctx.pool().map(
                partial(reroot, mode=mode, taxa=ctx.taxa, outgroup=names),  # type: ignore[arg-type]
                trees,
                label="tree",
            )
    except SupersmartError as e:
        report_error(e)

    if not rooted:
        fail("No tree could be rerooted")
    path = ctx.path(outfile)
    write_trees(rooted, path)
    out.print(f"[bold green]Wrote {len(rooted)} rerooted tree(s) to {path}[/bold green]")


def bbcalibrate(
    tree: Path = typer.Option(
        Path(DEFAULT_REROOTED_TREE), "--tree", "-t", help="Rooted backbone tree file",
    ),
    supermatrix: Path = typer.Option(
        Path(DEFAULT_SUPERMATRIX), "--supermatrix", "-s", help="Supermatrix (for the number of sites)",
    ),
    fossils: Path = typer.Option(..., "--fossiltable", "-f", help="Fossil table (TSV)"),
    taxa: Path = typer.Option(Path(DEFAULT_TAXA_FILE), "--taxafile", "-a", help="Taxa table"),
    outfile: Path = typer.Option(
        Path(DEFAULT_CHRONOGRAM), "--outfile", "-o", help="Chronogram file to write",
    ),
    table_file: Path = typer.Option(
        Path(DEFAULT_CALIBRATION_TABLE), "--calibtable", "-T", help="Calibration table to write",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Date the backbone trees with treePL.

    Fossils are placed on each tree, the calibration table is checked for
    conflicting nested fossils, and treePL runs once per tree.
    """
    from supersmart.core.decomposition import phylip_dimensions
    from supersmart.core.phylogeny.calibration import calibrate_trees
    from supersmart.models.calibration import read_fossil_table

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa)
    out = QuietConsole(console, quiet=quiet)
    try:
        trees = read_trees(ctx.path(tree))
        records = read_fossil_table(ctx.path(fossils))
        _, numsites = phylip_dimensions(ctx.path(supermatrix))
        out.print(f"[bold]Fossils:[/bold] {len(records)}")
        with spinner_progress(f"Calibrating {len(trees)} tree(s)...", console, quiet):
            run = calibrate_trees(
                trees,
                records,
                taxa=ctx.taxa,
                numsites=numsites,
                config=ctx.config,
                pool=ctx.pool(),
                workdir=ctx.workdir,
            )
    except SupersmartError as e:
        report_error(e)

    run.table.to_tsv(ctx.path(table_file))
    path = ctx.path(outfile)
    write_trees(run.chronograms, path)
    out.print(f"[bold]Calibration points:[/bold] {len(run.table)}")
    out.print(f"[bold green]Wrote {len(run.chronograms)} chronogram(s) to {path}[/bold green]")
