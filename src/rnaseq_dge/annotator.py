"""
Annotation of differential expression results with gene symbols.

Joins the DE table to the gene annotation (and optionally to normalized
per-sample expression), then separates rows that cannot be used
downstream. Nothing is dropped silently: removed rows are returned in
``AnnotationResult.dropped`` with the reason.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .de_result import AnnotationResult, DEResult

logger = logging.getLogger(__name__)

REQUIRED_STATISTICS = ["log2FoldChange", "stat", "pvalue", "padj"]


@dataclass
class AnnotationConfig:
    """
    Configuration for result annotation and top-gene selection.

    Attributes:
        keep_unannotated: Keep genes without a symbol, using the gene ID
            in place of the symbol. False drops them (reported as
            ``missing_symbol``).
        min_abs_lfc: Minimum |log2FC| for the top-gene list.
        max_pvalue: Maximum p-value for the top-gene list.
        pvalue_column: Column used with ``max_pvalue`` ("padj" or "pvalue").
        top_n: Number of top genes to select.
    """

    keep_unannotated: bool = False
    min_abs_lfc: float = 1.0
    max_pvalue: float = 0.05
    pvalue_column: str = "padj"
    top_n: int = 50


class ResultAnnotator:
    """
    Joins DE results to gene symbols and normalized expression.

    Example:
        annotator = ResultAnnotator(symbol_column="symbol")
        annotated = annotator.annotate(de_result, table.annotation, normalized.vst)
        print(annotated.dropped_by_reason())
    """

    def __init__(
        self,
        config: Optional[AnnotationConfig] = None,
        symbol_column: str = "symbol",
    ):
        self.config = config or AnnotationConfig()
        self.symbol_column = symbol_column

    def annotate(
        self,
        de_result: DEResult,
        annotation: pd.DataFrame,
        expression: Optional[pd.DataFrame] = None,
    ) -> AnnotationResult:
        """
        Join DE rows to symbols and drop incomplete rows with a reason.

        Args:
            de_result: Result of the DE engine
            annotation: Gene annotation indexed by gene ID
            expression: Optional normalized expression (genes x samples)
                appended as per-sample columns

        Returns:
            AnnotationResult with the usable table and the dropped rows
        """
        table = de_result.table.copy()
        if self.symbol_column in annotation.columns:
            symbols = annotation[self.symbol_column].reindex(table.index)
        else:
            symbols = pd.Series(pd.NA, index=table.index, dtype="object")
        symbols = symbols.where(symbols.astype(str).str.strip() != "", pd.NA)
        table.insert(0, "symbol", symbols)

        if expression is not None:
            expr = expression.reindex(table.index)
            expr.columns = [str(c) for c in expr.columns]
            table = table.join(expr)

        missing_stat = table[REQUIRED_STATISTICS].isna().any(axis=1)
        missing_symbol = table["symbol"].isna()

        if self.config.keep_unannotated:
            table.loc[missing_symbol, "symbol"] = table.index[missing_symbol.to_numpy()]
            missing_symbol = pd.Series(False, index=table.index)

        reason = pd.Series(pd.NA, index=table.index, dtype="object")
        reason[missing_symbol] = "missing_symbol"
        reason[missing_stat] = "missing_statistic"

        drop = missing_symbol | missing_stat
        dropped = table.loc[drop].assign(reason=reason[drop])
        result = AnnotationResult(table=table.loc[~drop], dropped=dropped)

        if result.n_dropped:
            logger.warning(
                "Dropped %d of %d DE rows before ranking: %s",
                result.n_dropped, len(table), result.dropped_by_reason(),
            )
        return result

    def top_genes(self, table: pd.DataFrame) -> pd.DataFrame:
        """Top genes by the configured thresholds; see ``select_top_genes``."""
        cfg = self.config
        return select_top_genes(
            table,
            min_abs_lfc=cfg.min_abs_lfc,
            max_pvalue=cfg.max_pvalue,
            n=cfg.top_n,
            pvalue_column=cfg.pvalue_column,
        )


def select_top_genes(
    table: pd.DataFrame,
    min_abs_lfc: float = 1.0,
    max_pvalue: float = 0.05,
    n: int = 50,
    pvalue_column: str = "padj",
) -> pd.DataFrame:
    """
    Select the top N genes by effect size among those passing both cutoffs.

    Keeps rows with ``|log2FoldChange| >= min_abs_lfc`` and
    ``pvalue_column <= max_pvalue``, sorted by descending |log2FC| then
    ascending p-value.

    Args:
        table: Annotated DE table
        min_abs_lfc: Minimum absolute log2 fold change
        max_pvalue: Maximum p-value
        n: Number of genes to return
        pvalue_column: "padj" or "pvalue"

    Returns:
        At most ``n`` rows
    """
    abs_lfc = table["log2FoldChange"].abs()
    keep = (abs_lfc >= min_abs_lfc) & (table[pvalue_column] <= max_pvalue)
    selected = table.loc[keep.fillna(False)].assign(_abs_lfc=abs_lfc[keep.fillna(False)])
    selected = selected.sort_values(["_abs_lfc", pvalue_column], ascending=[False, True])
    return selected.drop(columns="_abs_lfc").head(n)
