"""
Unit tests for backbone exemplar and marker selection.
"""

from __future__ import annotations

from collections import Counter

import pytest

from supersmart.core.decomposition.clades import decompose_backbone
from supersmart.core.decomposition.exemplars import (
    connected_components,
    largest_component,
    select_backbone,
    select_markers,
    usable_clusters,
)
from supersmart.core.exceptions import DecompositionError
from supersmart.core.phylogeny.tree_io import parse_newick, terminal_names
from supersmart.models.config import PipelineConfig
from supersmart.models.taxonomy import TaxaTable
from tests.helpers import BASE, SPECIES, make_cluster

DIVERGENT = "CATGCATGCATGCATGCATG"


@pytest.fixture
def pool() -> list:
    """Four identical clusters over all six species."""
    return [make_cluster(f"m{k}", dict.fromkeys(SPECIES, BASE)) for k in range(4)]


class TestUsableClusters:
    """Tests for the distance filter."""

    def test_divergent_cluster_is_dropped(self):
        clusters = [
            make_cluster("ok", {"101": BASE, "201": BASE}),
            make_cluster("far", {"101": BASE, "201": DIVERGENT}),
        ]

        kept = usable_clusters(clusters, ["101", "201"], max_distance=0.1)

        assert [c.cluster_id for c in kept] == ["ok"]

    def test_unknown_taxa_are_removed(self):
        clusters = [make_cluster("m", {"101": BASE, "999": DIVERGENT})]

        kept = usable_clusters(clusters, ["101"], max_distance=0.1)

        assert kept[0].taxa == ("101",)


class TestComponents:
    """Tests for the co-occurrence graph."""

    def test_two_components(self):
        clusters = [
            make_cluster("a", {"101": BASE, "102": BASE}),
            make_cluster("b", {"301": BASE, "302": BASE}),
        ]

        components = connected_components(clusters, ["101", "102", "301", "302"])

        assert components == [{"101", "102"}, {"301", "302"}]

    def test_largest_component_tie_prefers_smallest_id(self):
        assert largest_component([{"301", "302"}, {"101", "102"}]) == {"101", "102"}
        assert largest_component([{"5"}, {"7", "8"}]) == {"7", "8"}
        assert largest_component([]) == set()


class TestSelectMarkers:
    """Tests for the greedy marker choice."""

    @pytest.fixture
    def clusters(self) -> list:
        return [
            make_cluster("c0", {"A": BASE, "B": BASE, "C": BASE}),
            make_cluster("c1", {"A": BASE, "B": BASE}),
            make_cluster("c2", {"A": BASE, "C": BASE}),
            make_cluster("c3", {"B": BASE, "C": BASE}),
        ]

    def test_widest_cluster_first(self, clusters):
        assert select_markers(clusters, ["A", "B", "C"], min_coverage=1, max_coverage=1) == [0]

    def test_reaches_min_coverage(self, clusters):
        assert select_markers(clusters, ["A", "B", "C"], min_coverage=2, max_coverage=2) == [0, 1, 2]

    def test_saturated_cluster_is_skipped(self, clusters):
        """c3 only holds exemplars that already have max_coverage markers."""
        assert select_markers(clusters, ["A", "B", "C"], min_coverage=3, max_coverage=2) == [0, 1, 2]


class TestSelectBackbone:
    """Tests for select_backbone."""

    def test_default_caps_keep_all_species(self, pool, taxa_table: TaxaTable, config: PipelineConfig):
        selection = select_backbone(pool, taxa_table, config)

        assert selection.exemplars == ("101", "102", "201", "202", "301", "302")
        assert len(selection.clusters) == config.backbone_min_coverage
        assert selection.participation["101"] == 4

    def test_one_exemplar_per_genus(self, pool, taxa_table: TaxaTable):
        config = PipelineConfig(backbone_exemplars_per_genus=1)

        selection = select_backbone(pool, taxa_table, config)

        assert selection.exemplars == ("101", "201", "301")
        assert selection.exemplars_by_genus() == {"11": ["101"], "21": ["201"], "31": ["301"]}

    def test_included_taxon_takes_genus_slot(self, pool, taxa_table: TaxaTable):
        config = PipelineConfig(backbone_exemplars_per_genus=1)

        selection = select_backbone(pool, taxa_table, config, include_taxa=["102"])

        assert selection.exemplars == ("102", "201", "301")

    def test_included_taxon_without_data(self, pool, taxa_table: TaxaTable, config: PipelineConfig, caplog):
        select_backbone(pool, taxa_table, config, include_taxa=["999"])

        assert "999" in caplog.text

    def test_better_sampled_taxon_wins(self, taxa_table: TaxaTable):
        clusters = [make_cluster(f"m{k}", dict.fromkeys(SPECIES, BASE)) for k in range(3)]
        clusters.append(make_cluster("extra", {"102": BASE, "201": BASE, "301": BASE}))
        config = PipelineConfig(backbone_exemplars_per_genus=1)

        selection = select_backbone(clusters, taxa_table, config)

        assert selection.exemplars[0] == "102"

    def test_clusters_are_restricted_to_exemplars(self, pool, taxa_table: TaxaTable):
        selection = select_backbone(pool, taxa_table, PipelineConfig(backbone_exemplars_per_genus=1))

        assert all(c.taxa == ("101", "201", "301") for c in selection.clusters)
        assert selection.marker_counts() == {"101": 3, "201": 3, "301": 3}

    def test_no_exemplar(self, pool, taxa_table: TaxaTable):
        config = PipelineConfig(backbone_min_coverage=5)

        with pytest.raises(DecompositionError):
            select_backbone(pool, taxa_table, config)


class TestBackboneAndCladeCoverage:
    """Six species in three genera, with only four taxa sequenced twice."""

    @pytest.fixture
    def sparse_pool(self) -> list:
        return [
            make_cluster("m0", {"101": BASE, "102": BASE, "201": BASE, "301": BASE}),
            make_cluster("m1", {"101": BASE, "201": BASE, "301": BASE, "302": BASE}),
            make_cluster("m2", {"102": BASE, "202": BASE}),
        ]

    def test_exemplars_are_the_taxa_in_two_clusters(self, sparse_pool, taxa_table: TaxaTable):
        selection = select_backbone(sparse_pool, taxa_table, PipelineConfig(backbone_min_coverage=2))

        assert selection.exemplars == ("101", "102", "201", "301")

    def test_remaining_taxa_land_in_exactly_one_clade(self, sparse_pool, taxa_table: TaxaTable):
        selection = select_backbone(sparse_pool, taxa_table, PipelineConfig(backbone_min_coverage=2))
        backbone = parse_newick("(((101:2,102:2):3,201:5):5,301:10);")
        assert sorted(terminal_names(backbone)) == list(selection.exemplars)

        clades = decompose_backbone(backbone, taxa_table)

        members = Counter(m for clade in clades for m in clade.members)
        assert members == {"202": 1, "302": 1}
        assert [c.exemplars for c in clades] == [("101", "102", "201"), ("301",)]
