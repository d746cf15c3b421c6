"""
Taxonomy commands.

- taxize: resolve a list of names to the taxa table
- classify: write the classification tree of the taxa table
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
from supersmart.core.constants import DEFAULT_CLASSIFICATION_TREE, DEFAULT_TAXA_FILE
from supersmart.core.exceptions import SupersmartError
from supersmart.models.taxonomy import ClassificationTree, Rank


def taxize(
    infile: Path = typer.Option(
        ...,
        "--infile",
        "-i",
        help="File with one taxon name per line",
        exists=True,
        dir_okay=False,
    ),
    outfile: Path = typer.Option(
        Path(DEFAULT_TAXA_FILE), "--outfile", "-o", help="Taxa table to write",
    ),
    expand_rank: str | None = typer.Option(
        None,
        "--expand-rank",
        "-e",
        help="Expand higher taxa to their descendants at this rank (e.g. species)",
    ),
    binomials_only: bool = typer.Option(
        False, "--binomials-only", "-b", help="Only keep species with binomial names",
    ),
    api_key: str | None = typer.Option(
        None, "--api-key", envvar="NCBI_API_KEY", help="NCBI API key (raises the rate limit)",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Resolve taxon names against the NCBI taxonomy.

    Unresolvable, unidentified and environmental names are skipped.

    Examples:

        smrt taxize -i names.txt

        smrt taxize -i families.txt -e species -b
    """
    from supersmart.clients.ncbi_taxonomy import NCBITaxonomyClient
    from supersmart.core.taxize import read_names, resolve_names

    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet)
    out = QuietConsole(console, quiet=quiet)

    rank = None
    if expand_rank is not None:
        rank = Rank.parse(expand_rank)
        if rank is None:
            fail(f"Unknown rank '{expand_rank}'")

    try:
        names = read_names(infile)
        out.print(f"[bold]Names:[/bold] {len(names)}")
        with (
            NCBITaxonomyClient(api_key=api_key) as client,
            spinner_progress(f"Resolving {len(names)} names...", console, quiet),
        ):
            table = resolve_names(
                names, client, pool=ctx.pool(), expand_rank=rank, binomials_only=binomials_only,
            )
    except SupersmartError as e:
        report_error(e)

    if len(table) == 0:
        fail("None of the names could be resolved")

    path = ctx.path(outfile)
    table.to_tsv(path)
    out.print(f"[bold green]Wrote {len(table)} taxa to {path}[/bold green]")


def classify(
    taxa: Path = typer.Option(
        Path(DEFAULT_TAXA_FILE), "--taxafile", "-t", help="Taxa table",
    ),
    outfile: Path = typer.Option(
        Path(DEFAULT_CLASSIFICATION_TREE), "--outfile", "-o", help="Newick file to write",
    ),
    workdir: Path = WORKDIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Write the taxonomic classification of the taxa table as a Newick tree."""
    ctx = make_context(workdir, config, verbose=verbose, quiet=quiet, taxa_file=taxa)
    out = QuietConsole(console, quiet=quiet)

    tree = ClassificationTree.from_taxa_table(ctx.require_taxa())
    if not len(tree):
        fail("The taxa table holds no classified taxa")
    path = ctx.path(outfile)
    path.write_text(tree.to_newick() + "\n")
    out.print(f"[bold green]Classification tree with {len(tree)} taxa written to {path}[/bold green]")
