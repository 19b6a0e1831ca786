"""
Tests for DE result annotation and top-gene selection.
"""

import numpy as np
import pandas as pd
import pytest

from rnaseq_dge.annotator import AnnotationConfig, ResultAnnotator, select_top_genes
from rnaseq_dge.de_result import DE_COLUMNS, DEResult


def _make_de_result():
    table = pd.DataFrame(
        {
            "baseMean": [100.0, 50.0, 20.0, 80.0, 10.0],
            "log2FoldChange": [2.5, -1.5, 0.2, 3.0, np.nan],
            "lfcSE": [0.3, 0.3, 0.3, 0.3, np.nan],
            "stat": [8.0, -5.0, 0.7, 9.0, np.nan],
            "pvalue": [1e-10, 1e-5, 0.5, 1e-12, np.nan],
            "padj": [1e-9, 1e-4, 0.6, np.nan, np.nan],
        },
        index=pd.Index(["ENSG1", "ENSG2", "ENSG3", "ENSG4", "ENSG5"], name="gene_id"),
    )
    return DEResult(table=table[DE_COLUMNS])


def _make_annotation():
    return pd.DataFrame(
        {"symbol": ["TP53", None, "MYC", "EGFR", "KRAS"]},
        index=["ENSG1", "ENSG2", "ENSG3", "ENSG4", "ENSG5"],
    )


def _make_top_table(n=200, seed=0):
    rng = np.random.RandomState(seed)
    return pd.DataFrame({
        "symbol": [f"S{i}" for i in range(n)],
        "log2FoldChange": rng.normal(0, 2, size=n),
        "pvalue": rng.uniform(0, 0.2, size=n),
        "padj": rng.uniform(0, 0.2, size=n),
    }, index=[f"G{i}" for i in range(n)])


class TestAnnotate:
    """Tests for the symbol join and the drop report."""

    def test_drop_reasons(self):
        result = ResultAnnotator().annotate(_make_de_result(), _make_annotation())

        assert list(result.table.index) == ["ENSG1", "ENSG3"]
        assert result.dropped.loc["ENSG2", "reason"] == "missing_symbol"
        # missing statistic wins over a present symbol
        assert result.dropped.loc["ENSG4", "reason"] == "missing_statistic"
        assert result.dropped.loc["ENSG5", "reason"] == "missing_statistic"
        assert result.dropped_by_reason() == {"missing_statistic": 2, "missing_symbol": 1}
        assert result.table.columns[0] == "symbol"

    def test_no_rows_lost(self):
        result = ResultAnnotator().annotate(_make_de_result(), _make_annotation())
        assert len(result.table) + result.n_dropped == 5

    def test_keep_unannotated_uses_gene_id(self):
        annotator = ResultAnnotator(AnnotationConfig(keep_unannotated=True))
        result = annotator.annotate(_make_de_result(), _make_annotation())

        assert result.table.loc["ENSG2", "symbol"] == "ENSG2"
        assert "missing_symbol" not in result.dropped_by_reason()

    def test_blank_symbol_treated_as_missing(self):
        annotation = _make_annotation()
        annotation.loc["ENSG1", "symbol"] = "  "

        result = ResultAnnotator().annotate(_make_de_result(), annotation)

        assert result.dropped.loc["ENSG1", "reason"] == "missing_symbol"

    def test_expression_columns_joined(self):
        expression = pd.DataFrame(
            {"S1": [1.0, 2.0, 3.0, 4.0, 5.0], "S2": [5.0, 4.0, 3.0, 2.0, 1.0]},
            index=["ENSG1", "ENSG2", "ENSG3", "ENSG4", "ENSG5"],
        )
        result = ResultAnnotator().annotate(_make_de_result(), _make_annotation(), expression)

        assert result.table.loc["ENSG3", "S2"] == 3.0

    def test_input_not_modified(self):
        de_result = _make_de_result()
        before = de_result.table.copy()

        ResultAnnotator().annotate(de_result, _make_annotation())

        pd.testing.assert_frame_equal(de_result.table, before)


class TestSelectTopGenes:
    """Tests for the top-gene cutoffs and ordering."""

    @pytest.mark.parametrize("min_abs_lfc,max_pvalue", [(1.0, 0.05), (0.5, 0.1), (2.0, 0.01)])
    def test_never_violates_cutoffs(self, min_abs_lfc, max_pvalue):
        table = _make_top_table()

        top = select_top_genes(table, min_abs_lfc=min_abs_lfc, max_pvalue=max_pvalue, n=50)

        assert (top["log2FoldChange"].abs() >= min_abs_lfc).all()
        assert (top["padj"] <= max_pvalue).all()
        assert len(top) <= 50

    def test_ordering(self):
        table = pd.DataFrame({
            "log2FoldChange": [1.5, -3.0, 3.0, 2.0],
            "padj": [0.01, 0.01, 0.001, 0.2],
        }, index=["a", "b", "c", "d"])

        top = select_top_genes(table, n=10)

        # d fails the p-value cutoff; ties on |lfc| broken by p-value
        assert list(top.index) == ["c", "b", "a"]
        assert "_abs_lfc" not in top.columns

    def test_raw_pvalue_column(self):
        table = _make_top_table()
        top = select_top_genes(table, pvalue_column="pvalue", max_pvalue=0.02)
        assert (top["pvalue"] <= 0.02).all()

    def test_truncates(self):
        top = select_top_genes(_make_top_table(), min_abs_lfc=0.0, max_pvalue=1.0, n=5)
        assert len(top) == 5
