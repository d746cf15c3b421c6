"""
Unit tests for clade decomposition and clade marker selection.

The backbone holds exemplars 101 (Alpha), 201 (Beta), 301 and 302
(Gamma): Alpha and Beta share one attachment node, Gamma is fully
represented by its exemplars.
"""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest

from supersmart.core.decomposition.clades import (
    Clade,
    attachment_nodes,
    choose_outgroup,
    clade_directories,
    decompose_backbone,
    outgroup_candidates,
    read_manifest,
    select_clade_markers,
    select_clades,
    write_clade,
    write_clade_markers,
    write_manifest,
)
from supersmart.core.exceptions import MalformedInputError, MissingInputFileError
from supersmart.core.phylogeny.tree_io import parse_newick, terminal_names
from supersmart.models.config import PipelineConfig
from supersmart.models.taxonomy import ClassificationTree, TaxaTable
from tests.helpers import BASE, SPECIES, make_cluster, taxa_records

DIVERGENT = "CATGCATGCATGCATGCATG"


@pytest.fixture
def taxa_with_orphan() -> TaxaTable:
    """The six species plus Delta one (genus 41, family 2), absent from the backbone."""
    records = taxa_records()
    records.append(
        {"name": "Delta one", "order": "9", "family": "2", "genus": "41", "species": "401", "genus_name": "Delta"}
    )
    return TaxaTable.from_records(records)


@pytest.fixture
def taxa_with_outgroup() -> TaxaTable:
    """Three genera of three, three and two species; genus 41 is the outgroup."""
    species = {
        "101": ("Alpha one", "11", "Alpha", "1"),
        "102": ("Alpha two", "11", "Alpha", "1"),
        "103": ("Alpha three", "11", "Alpha", "1"),
        "201": ("Beta one", "21", "Beta", "1"),
        "202": ("Beta two", "21", "Beta", "1"),
        "203": ("Beta three", "21", "Beta", "1"),
        "401": ("Delta one", "41", "Delta", "4"),
        "402": ("Delta two", "41", "Delta", "4"),
    }
    return TaxaTable.from_records(taxa_records(species))


@pytest.fixture
def outgroup_backbone():
    """Backbone rerooted on the single Delta exemplar."""
    return parse_newick("(401:10,((101:3,102:3):4,(201:3,202:3):4):3);")


@pytest.fixture
def clade0() -> Clade:
    return Clade(clade_id="clade0", exemplars=("101", "201"), members=("102", "202"), genera=("11", "21"))


@pytest.fixture
def clusters() -> list:
    return [
        make_cluster("m0", dict.fromkeys(SPECIES, BASE)),
        make_cluster("m1", {"101": BASE, "102": BASE, "201": BASE}),
        make_cluster("m2", {"101": BASE, "102": BASE, "201": DIVERGENT, "202": DIVERGENT}),
        make_cluster("m3", {"101": BASE, "102": BASE}),
    ]


class TestAttachmentNodes:
    """Tests for locating clade attachment points."""

    def test_single_exemplar_genera_group_with_sister(self, dated_backbone, taxa_table: TaxaTable):
        nodes = attachment_nodes(dated_backbone, taxa_table)

        assert [sorted(terminal_names(n)) for n in nodes] == [["101", "201"], ["301", "302"]]

    def test_lone_genus_under_root_keeps_its_tip(self, outgroup_backbone, taxa_with_outgroup: TaxaTable):
        nodes = attachment_nodes(outgroup_backbone, taxa_with_outgroup)

        assert [sorted(terminal_names(n)) for n in nodes] == [["401"], ["101", "102"], ["201", "202"]]

    def test_split_genus_widens_node(self, taxa_table: TaxaTable):
        tree = parse_newick("((101:1,201:1):1,(102:1,301:1):1);")

        nodes = attachment_nodes(tree, taxa_table)

        assert len(nodes) == 1
        assert nodes[0] is tree.root


class TestDecomposeBackbone:
    """Tests for partitioning the taxa into clades."""

    def test_fully_represented_genus_has_no_clade(self, dated_backbone, taxa_table: TaxaTable):
        clades = decompose_backbone(dated_backbone, taxa_table)

        assert len(clades) == 1
        assert clades[0].clade_id == "clade0"
        assert clades[0].exemplars == ("101", "201")
        assert clades[0].members == ("102", "202")
        assert clades[0].genera == ("11", "21")

    def test_rooted_outgroup_does_not_swallow_the_backbone(
        self, outgroup_backbone, taxa_with_outgroup: TaxaTable
    ):
        clades = decompose_backbone(outgroup_backbone, taxa_with_outgroup)

        assert [(c.exemplars, c.members) for c in clades] == [
            (("401",), ("402",)),
            (("101", "102"), ("103",)),
            (("201", "202"), ("203",)),
        ]

    def test_orphan_genus_joins_closest_clade(self, dated_backbone, taxa_with_orphan: TaxaTable):
        classification = ClassificationTree.from_taxa_table(taxa_with_orphan)

        clades = decompose_backbone(dated_backbone, taxa_with_orphan, classification)

        assert [c.clade_id for c in clades] == ["clade0", "clade1"]
        assert clades[1].exemplars == ("301", "302")
        assert clades[1].members == ("401",)
        assert clades[1].genera == ("31", "41")

    def test_homeless_orphan_collapses_to_root(self, dated_backbone, taxa_with_orphan: TaxaTable):
        clades = decompose_backbone(dated_backbone, taxa_with_orphan, classification=None)

        assert len(clades) == 1
        assert clades[0].exemplars == ("101", "201", "301", "302")
        assert clades[0].members == ("102", "202", "401")

    def test_every_non_exemplar_is_in_one_clade(self, dated_backbone, taxa_with_orphan: TaxaTable):
        classification = ClassificationTree.from_taxa_table(taxa_with_orphan)
        clades = decompose_backbone(dated_backbone, taxa_with_orphan, classification)

        members = [m for c in clades for m in c.members]
        assert sorted(members) == ["102", "202", "401"]

    def test_clade_taxa_and_number(self, clade0: Clade):
        assert clade0.taxa == ("101", "102", "201", "202")
        assert clade0.number == 0


class TestCladeMarkers:
    """Tests for per-clade marker selection."""

    def test_qualifying_markers(self, clade0: Clade, clusters, config: PipelineConfig):
        markers, kept = select_clade_markers(clade0, clusters, config)

        assert [m.marker for m in markers] == ["m0", "m1"]
        assert kept == ["101", "102", "201"]

    def test_markers_are_restricted_to_kept_taxa(self, clade0: Clade, clusters, config: PipelineConfig):
        markers, _ = select_clade_markers(clade0, clusters, config)

        assert markers[0].ingroup.taxa == ("101", "102", "201")
        assert markers[0].density == 1.0

    def test_cap_keeps_densest(self, clade0: Clade, clusters):
        config = PipelineConfig(clade_max_markers=1, clade_taxon_min_markers=1)

        markers, kept = select_clade_markers(clade0, clusters, config)

        assert [m.marker for m in markers] == ["m0"]
        assert kept == ["101", "102", "201", "202"]

    def test_exemplar_with_one_marker_is_kept(self, clusters, config: PipelineConfig):
        clade = Clade(clade_id="clade0", exemplars=("202",), members=("101", "102", "201"))

        _, kept = select_clade_markers(clade, clusters, config)

        assert "202" in kept


class TestOutgroup:
    """Tests for outgroup candidates and choice."""

    def test_sister_subtree(self, dated_backbone, clade0: Clade):
        assert outgroup_candidates(dated_backbone, clade0) == ["301", "302"]

    def test_root_clade_has_no_outgroup(self, dated_backbone):
        clade = Clade(clade_id="clade0", exemplars=("101", "301"), members=("102",))
        assert outgroup_candidates(dated_backbone, clade) == []

    def test_choose_by_marker_count(self, clade0: Clade, clusters, config: PipelineConfig):
        markers, _ = select_clade_markers(clade0, clusters, config)

        assert choose_outgroup(["302", "301", "999"], markers, limit=1) == ["301"]


class TestSelectClades:
    """Tests for select_clades."""

    def test_with_outgroup(self, dated_backbone, clade0: Clade, clusters, config: PipelineConfig):
        selections = select_clades(dated_backbone, [clade0], clusters, config, add_outgroup=True)

        clade = selections[0].clade
        assert clade.outgroup == ("301", "302")
        assert clade.markers == ("m0.fa", "m1.fa")
        assert clade.matrix_taxa == ("101", "102", "201")
        assert selections[0].dropped == ("202",)

    def test_clade_without_markers_is_skipped(self, dated_backbone, clade0: Clade, config: PipelineConfig):
        selections = select_clades(dated_backbone, [clade0], [make_cluster("m3", {"101": BASE})], config)

        assert selections == []


class TestCladeFiles:
    """Tests for clade directories and manifests."""

    def test_write_clade(self, tmp_path: Path, dated_backbone, clade0: Clade, clusters, config: PipelineConfig):
        selection = select_clades(dated_backbone, [clade0], clusters, config, add_outgroup=True)[0]

        directory = write_clade(selection, tmp_path)

        assert directory == tmp_path / "clade0"
        assert sorted(p.name for p in directory.iterdir()) == ["clade.yaml", "m0.fa", "m1.fa"]
        assert (directory / "m0.fa").read_text().count(">") == 5
        assert read_manifest(directory) == selection.clade

    def test_clade_directories_are_sorted_numerically(self, tmp_path: Path):
        for name in ("clade10", "clade2", "cladeX"):
            (tmp_path / name).mkdir()
        (tmp_path / "clade3").write_text("not a directory")

        assert [p.name for p in clade_directories(tmp_path)] == ["clade2", "clade10"]

    def test_manifest_round_trip(self, tmp_path: Path, clade0: Clade):
        write_manifest(clade0, tmp_path)
        assert read_manifest(tmp_path) == clade0

    def test_missing_manifest(self, tmp_path: Path):
        with pytest.raises(MissingInputFileError):
            read_manifest(tmp_path)

    def test_malformed_manifest(self, tmp_path: Path):
        (tmp_path / "clade.yaml").write_text("- a\n- b\n")
        with pytest.raises(MalformedInputError):
            read_manifest(tmp_path)

    def test_markers_table(self, tmp_path: Path, dated_backbone, clade0: Clade, clusters, config: PipelineConfig):
        path = tmp_path / "markers-clades.tsv"
        write_clade_markers(select_clades(dated_backbone, [clade0], clusters, config), path)

        df = pl.read_csv(path, separator="\t")
        assert df["marker"].to_list() == ["m0", "m1"]
        assert df["taxa"].to_list() == [3, 3]
