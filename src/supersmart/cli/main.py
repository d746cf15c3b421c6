"""
Main CLI entry point for supersmart.

Each pipeline stage is a subcommand that reads its inputs from and writes
its outputs to the working directory:

- taxize, classify: taxa table and classification tree
- bbmerge, bbinfer, bbreroot, bbcalibrate, consense: backbone
- bbdecompose, clademerge, cladeinfer, cladegraft: clades and final tree
"""

from __future__ import annotations

import typer
from rich import print as rprint

from supersmart import __version__
from supersmart.cli import backbone, clade, consense, taxonomy

app = typer.Typer(
    name="smrt",
    help="Phylogenetic inference of large trees by backbone and clade decomposition",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"supersmart version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    SUPERSMART: self-updating platform for estimating rates of speciation
    and migration, ages and relationships of taxa.
    """


# Register subcommands
app.command(name="taxize")(taxonomy.taxize)
app.command(name="classify")(taxonomy.classify)
app.command(name="bbmerge")(backbone.bbmerge)
app.command(name="bbinfer")(backbone.bbinfer)
app.command(name="bbreroot")(backbone.bbreroot)
app.command(name="bbcalibrate")(backbone.bbcalibrate)
app.command(name="consense")(consense.consense)
app.command(name="bbdecompose")(clade.bbdecompose)
app.command(name="clademerge")(clade.clademerge)
app.command(name="cladeinfer")(clade.cladeinfer)
app.command(name="cladegraft")(clade.cladegraft)


if __name__ == "__main__":
    app()
