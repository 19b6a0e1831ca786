"""
Tests for pre-ranked enrichment.

Contract tests use a fake backend. The gseapy scenario test is skipped
when gseapy is not installed.
"""

import numpy as np
import pandas as pd
import pytest

from rnaseq_dge.de_result import ENRICHMENT_COLUMNS, RankedList
from rnaseq_dge.enrichment_analyzer import (
    EnrichmentAnalyzer,
    EnrichmentConfig,
    adjust_pvalues,
    direction_labels,
    filter_gene_sets,
    load_gene_sets,
)
from rnaseq_dge.exceptions import EmptyInputError


def _make_ranked(n=20):
    """Genes G1..Gn with G1 ranked highest."""
    ranks = pd.Series(
        np.linspace(10.0, -9.0, n), index=[f"G{i}" for i in range(1, n + 1)], name="stat"
    ).sort_values()
    ranks.index.name = "symbol"
    return RankedList(ranks=ranks, metric="stat")


class _TableBackend:
    """Fake engine returning fixed (nes, pvalue) per pathway."""

    name = "fake"

    def __init__(self, values):
        self.values = values
        self.calls = []

    def run(self, ranks, gene_sets, config):
        self.calls.append(sorted(gene_sets))
        rows = []
        for pathway in gene_sets:
            nes, pvalue = self.values[pathway]
            rows.append({
                "pathway": pathway,
                "es": nes / 2,
                "nes": nes,
                "pvalue": pvalue,
                "fdr_qval": pvalue,
                "leading_edge": list(gene_sets[pathway])[:2],
            })
        return pd.DataFrame(rows)


def _make_collections():
    return {
        "hallmark": {
            "HALLMARK_UP": ["G1", "G2", "G3"],
            "HALLMARK_DOWN": ["G18", "G19", "G20"],
            "HALLMARK_ZERO": ["G9", "G10"],
        },
        "reactome": {
            "REACTOME_A": ["G1", "G5", "G9"],
            "REACTOME_TINY": ["G1", "NOT_RANKED"],
        },
    }


def _make_backend():
    return _TableBackend({
        "HALLMARK_UP": (1.8, 0.01),
        "HALLMARK_DOWN": (-1.6, 0.04),
        "HALLMARK_ZERO": (0.0, 0.9),
        "REACTOME_A": (-0.5, 0.01),
    })


class TestHelpers:
    """Tests for the analyzer building blocks."""

    def test_direction_labels(self):
        nes = pd.Series([2.0, -1.0, 0.0, 1e-9])
        assert direction_labels(nes).tolist() == ["up", "down", "down", "up"]

    def test_adjust_pvalues_ignores_nan(self):
        adjusted = adjust_pvalues(pd.Series([0.01, np.nan, 0.04]))

        assert np.isnan(adjusted.iloc[1])
        np.testing.assert_allclose(adjusted.iloc[[0, 2]], [0.02, 0.04])

    def test_filter_gene_sets_counts_overlap(self):
        sizes = filter_gene_sets(_make_collections()["reactome"], _make_ranked().genes, 2, 10)
        assert sizes == {"REACTOME_A": 3}

    def test_load_gene_sets(self, tmp_path):
        pytest.importorskip("gseapy")
        path = tmp_path / "sets.gmt"
        path.write_text("SET_A\tdesc\tG1\tG2\tG3\nSET_B\tdesc\tG4\tG5\n")

        gene_sets = load_gene_sets(path)

        assert gene_sets["SET_A"] == ["G1", "G2", "G3"]
        assert set(gene_sets) == {"SET_A", "SET_B"}


class TestEnrichmentAnalyzer:
    """Contract tests with a fake backend."""

    def test_direction_per_collection(self):
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=2, max_size=10), _make_backend())

        result = analyzer.analyze(_make_ranked(), _make_collections())

        for name in ("hallmark", "reactome"):
            table = result[name].table
            assert list(table.columns) == ENRICHMENT_COLUMNS
            expected = np.where(table["nes"] > 0, "up", "down")
            assert table["direction"].tolist() == list(expected)

        hallmark = result["hallmark"].table.set_index("pathway")
        assert hallmark.loc["HALLMARK_UP", "direction"] == "up"
        assert hallmark.loc["HALLMARK_DOWN", "direction"] == "down"
        assert hallmark.loc["HALLMARK_ZERO", "direction"] == "down"

    def test_collections_corrected_independently(self):
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=2, max_size=10), _make_backend())

        result = analyzer.analyze(_make_ranked(), _make_collections())

        # a single tested pathway keeps its nominal p-value
        reactome = result["reactome"].table
        assert reactome["padj"].tolist() == pytest.approx([0.01])
        hallmark = result["hallmark"].table.set_index("pathway")
        assert hallmark.loc["HALLMARK_UP", "padj"] == pytest.approx(0.03)

    def test_size_filter_applied_before_backend(self):
        backend = _make_backend()
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=2, max_size=10), backend)

        result = analyzer.analyze(_make_ranked(), _make_collections())

        assert backend.calls[1] == ["REACTOME_A"]
        assert result["reactome"].n_gene_sets == 2
        assert result["reactome"].n_tested == 1
        assert result["reactome"].table.loc[0, "size"] == 3

    def test_collection_without_testable_sets(self, caplog):
        backend = _make_backend()
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=5, max_size=10), backend)

        with caplog.at_level("WARNING"):
            result = analyzer.analyze(_make_ranked(), _make_collections())

        assert result["hallmark"].n_tested == 0
        assert list(result["hallmark"].table.columns) == ENRICHMENT_COLUMNS
        assert backend.calls == []
        assert "no gene set passed" in caplog.text

    def test_empty_ranked_list(self):
        ranked = RankedList(ranks=pd.Series(dtype=float), metric="stat")
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=2), _make_backend())

        with pytest.raises(EmptyInputError):
            analyzer.analyze(ranked, _make_collections())

    def test_provenance_and_dict(self):
        analyzer = EnrichmentAnalyzer(
            EnrichmentConfig(min_size=2, max_size=10, seed=7), _make_backend()
        )

        result = analyzer.analyze(_make_ranked(), _make_collections())
        data = result.to_dict()

        assert data["provenance"]["backend"] == "fake"
        assert data["provenance"]["seed"] == 7
        assert data["provenance"]["n_ranked_genes"] == 20
        up = [p for p in data["collections"]["hallmark"]["pathways"] if p["pathway"] == "HALLMARK_UP"]
        assert up[0]["leading_edge"] == ["G1", "G2"]


class TestGseapyPrerank:
    """Scenario test with the real permutation engine."""

    def test_top_concentrated_pathway_is_up(self):
        pytest.importorskip("gseapy")
        ranked = _make_ranked(20)
        collections = {"test": {"TOP_FIVE": ["G1", "G2", "G3", "G4", "G5"]}}
        config = EnrichmentConfig(min_size=3, max_size=50, permutation_num=100, seed=7)

        result = EnrichmentAnalyzer(config).analyze(ranked, collections)
        row = result["test"].table.iloc[0]

        assert row["pathway"] == "TOP_FIVE"
        assert row["nes"] > 0
        assert row["direction"] == "up"
        assert row["size"] == 5
        assert set(row["leading_edge"]) <= {"G1", "G2", "G3", "G4", "G5"}
