"""
End-to-end tests of run_pipeline.

The normalizer always runs the PyDESeq2 VST, so the module is skipped
without pydeseq2. DE and enrichment use fake engines to keep it fast.
"""

import json

import numpy as np
import pandas as pd
import pytest

pytest.importorskip("pydeseq2")

from rnaseq_dge.config import PipelineConfig  # noqa: E402
from rnaseq_dge.data_loader import CountTable  # noqa: E402
from rnaseq_dge.exceptions import InputValidationError  # noqa: E402
from rnaseq_dge.pipeline import run_pipeline  # noqa: E402
from rnaseq_dge.report_generator import ReportGenerator  # noqa: E402

SAMPLES = [f"S{i}" for i in range(1, 9)]


def _make_inputs(n_genes=200, seed=0):
    rng = np.random.RandomState(seed)
    base = rng.gamma(shape=2.0, scale=100.0, size=n_genes) + 50
    group_b = np.array([0, 0, 0, 0, 1, 1, 1, 1], dtype=bool)
    batch_2 = np.array([0, 1] * 4, dtype=bool)

    means = np.outer(base, np.ones(len(SAMPLES)))
    means[:10, group_b] *= 4
    means[:, batch_2] *= 1.5
    counts = pd.DataFrame(
        rng.poisson(means), index=[f"ENSG{i:05d}" for i in range(n_genes)], columns=SAMPLES
    )
    counts.index.name = "gene_id"
    annotation = pd.DataFrame({
        "symbol": [f"SYM{i}" for i in range(n_genes)],
        "biotype": ["protein_coding"] * (n_genes - 5) + ["lncRNA"] * 5,
        "chromosome": ["1"] * (n_genes - 3) + ["X", "Y", "chrX"],
    }, index=counts.index)
    metadata = pd.DataFrame({
        "group": ["A"] * 4 + ["B"] * 4,
        "batch": ["b1", "b2"] * 4,
    }, index=pd.Index(SAMPLES, name="sample"))
    return CountTable(counts=counts.astype("int64"), annotation=annotation), metadata


def _make_gene_sets():
    return {
        "hallmark": {
            "SET_TOP": [f"SYM{i}" for i in range(10)],
            "SET_REST": [f"SYM{i}" for i in range(50, 80)],
        },
        "reactome": {"TINY": ["SYM1", "SYM2"]},
    }


class _RecordingDEBackend:
    name = "fake"

    def __init__(self):
        self.calls = []

    def fit(self, counts, metadata, design, contrast, config):
        self.calls.append(counts.copy())
        factor, test, ref = contrast
        groups = metadata[factor]
        lfc = np.log2(
            (counts.loc[:, groups == test].mean(axis=1) + 1)
            / (counts.loc[:, groups == ref].mean(axis=1) + 1)
        )
        pvalue = np.exp(-8 * np.abs(lfc))
        return pd.DataFrame({
            "baseMean": counts.mean(axis=1),
            "log2FoldChange": lfc,
            "lfcSE": 0.2,
            "stat": lfc * 5,
            "pvalue": pvalue,
            "padj": np.minimum(pvalue * len(pvalue), 1.0),
        })


class _FixedEnrichmentBackend:
    name = "fake"

    def run(self, ranks, gene_sets, config):
        rows = []
        for i, (pathway, genes) in enumerate(sorted(gene_sets.items())):
            rows.append({
                "pathway": pathway,
                "es": 0.5 - i,
                "nes": 1.5 - 3 * i,
                "pvalue": 0.001 * (i + 1),
                "fdr_qval": 0.001 * (i + 1),
                "leading_edge": list(genes)[:3],
            })
        return pd.DataFrame(rows)


def _make_config(remove_batch=False, **sections):
    data = {
        "de": {"reference": "A", "batch_column": "batch"},
        "normalization": {"remove_batch_effect": remove_batch},
        "enrichment": {"min_size": 5},
    }
    data.update(sections)
    return PipelineConfig.from_dict(data)


def _run(config, gene_sets=None, backend=None):
    table, metadata = _make_inputs()
    return run_pipeline(
        config,
        table=table,
        metadata=metadata,
        gene_sets=gene_sets,
        de_backend=backend or _RecordingDEBackend(),
        enrichment_backend=_FixedEnrichmentBackend(),
    )


class TestRunPipeline:
    """Tests of stage wiring and invariants across stages."""

    def test_batch_removal_does_not_touch_de(self):
        plain_backend, corrected_backend = _RecordingDEBackend(), _RecordingDEBackend()

        plain = _run(_make_config(remove_batch=False), backend=plain_backend)
        corrected = _run(_make_config(remove_batch=True), backend=corrected_backend)

        assert plain.normalized.batch_corrected is None
        assert corrected.normalized.batch_corrected is not None
        assert corrected.normalized.display_matrix is corrected.normalized.batch_corrected
        pd.testing.assert_frame_equal(plain_backend.calls[0], corrected_backend.calls[0])
        pd.testing.assert_frame_equal(plain.de_result.table, corrected.de_result.table)

    def test_de_receives_filtered_raw_counts(self):
        backend = _RecordingDEBackend()

        result = _run(_make_config(), backend=backend)

        pd.testing.assert_frame_equal(backend.calls[0], result.filtered.counts)
        assert backend.calls[0].dtypes.unique().tolist() == [np.dtype("int64")]

    def test_annotation_filters(self):
        config = _make_config(gene_filter={
            "biotypes": ["protein_coding"], "remove_sex_chromosomes": True,
        })

        result = _run(config)

        removed = result.filtered.removed_by()
        assert removed["biotype"] == 5
        assert removed["sex_chromosomes"] == 3
        assert "ENSG00199" not in result.filtered.counts.index

    def test_signal_genes_ranked_top(self):
        result = _run(_make_config())

        top = set(result.top_genes.index)
        assert {f"ENSG{i:05d}" for i in range(10)} <= top
        assert result.ranked.genes[-1] in {f"SYM{i}" for i in range(10)}
        assert result.ranked.metric == "stat"

    def test_enrichment_per_collection(self):
        result = _run(_make_config(), gene_sets=_make_gene_sets())

        hallmark = result.enrichment["hallmark"]
        assert hallmark.n_tested == 2
        assert hallmark.table["direction"].tolist() == ["up", "down"]
        # every gene set of reactome is below min_size
        assert result.enrichment["reactome"].n_tested == 0

    def test_enrichment_skipped_without_gene_sets(self):
        result = _run(_make_config())
        assert result.enrichment is None

    def test_missing_group_column(self):
        config = _make_config(de={"group_column": "condition", "reference": "A"})

        with pytest.raises(InputValidationError, match="condition"):
            _run(config)

    def test_summary_serializable(self):
        result = _run(_make_config(), gene_sets=_make_gene_sets())

        data = json.loads(json.dumps(result.to_dict(), default=str))

        assert data["input"]["n_samples"] == 8
        assert data["differential_expression"]["provenance"]["contrast"]["reference"] == "A"
        assert data["ranking"]["n_genes"] == len(result.ranked)
        assert set(data["enrichment"]["collections"]) == {"hallmark", "reactome"}


class TestWriteReport:
    """Tests for the on-disk report layout."""

    def test_tables_and_summary(self, tmp_path):
        result = _run(_make_config(report={"write_figures": False}), gene_sets=_make_gene_sets())

        written = ReportGenerator(result.config.report).write_report(result, tmp_path)

        names = {p.name for p in written["tables"]}
        assert names == {
            "de_results.tsv", "de_dropped.tsv", "top_genes.tsv", "ranked_genes.tsv",
            "enrichment_hallmark.tsv", "enrichment_reactome.tsv",
        }
        assert written["figures"] == []
        assert (tmp_path / "summary.json").exists()
        de = pd.read_csv(tmp_path / "tables" / "de_results.tsv", sep="\t", index_col=0)
        assert de.columns[0] == "symbol"
        assert "S1" in de.columns

    def test_figures(self, tmp_path):
        pytest.importorskip("plotly")
        result = _run(_make_config(remove_batch=True), gene_sets=_make_gene_sets())

        written = ReportGenerator().write_report(result, tmp_path)

        names = {p.name for p in written["figures"]}
        assert {
            "pca.html", "heatmap_normalized.html", "heatmap_zscore.html", "volcano.html",
            "de_top_genes.html", "enrichment_hallmark.html", "enrichment_hallmark_table.html",
        } <= names
        assert all(p.exists() for p in written["figures"])
