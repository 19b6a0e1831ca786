"""
Gene ranking for pre-ranked enrichment analysis.

Turns an annotated DE table into one statistic per gene symbol. Several
gene IDs can share a symbol; their statistics are averaged so the
ranked list has exactly one entry per symbol.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from .de_result import RankedList
from .exceptions import EmptyInputError, InputValidationError

logger = logging.getLogger(__name__)


class RankingMetric(Enum):
    """Statistics a gene can be ranked by."""

    STAT = "stat"  # Wald statistic
    LOG2FC = "log2fc"  # log2 fold change
    SIGNED_PVALUE = "signed_pvalue"  # -log10(p) * sign(log2FC)


@dataclass
class RankingConfig:
    """Configuration for gene ranking."""

    metric: RankingMetric = RankingMetric.STAT
    symbol_column: str = "symbol"

    def __post_init__(self):
        if isinstance(self.metric, str):
            self.metric = RankingMetric(self.metric)


def metric_values(table: pd.DataFrame, metric: RankingMetric) -> pd.Series:
    """Compute the ranking statistic for every row of a DE table."""
    if metric == RankingMetric.STAT:
        return table["stat"].astype(float)

    if metric == RankingMetric.LOG2FC:
        return table["log2FoldChange"].astype(float)

    if metric == RankingMetric.SIGNED_PVALUE:
        # Avoid log(0)
        pvalue = table["pvalue"].astype(float).clip(lower=1e-300)
        return -np.log10(pvalue) * np.sign(table["log2FoldChange"].astype(float))

    raise ValueError(f"Unknown ranking metric: {metric}")


def build_ranked_list(
    table: pd.DataFrame,
    metric: RankingMetric = RankingMetric.STAT,
    symbol_column: str = "symbol",
) -> RankedList:
    """
    Build a symbol -> statistic mapping sorted ascending.

    Rows with an undefined statistic or symbol are skipped. Duplicate
    symbols are collapsed to the arithmetic mean of their statistics.

    Args:
        table: Annotated DE table
        metric: Statistic to rank by
        symbol_column: Column holding gene symbols

    Returns:
        RankedList

    Raises:
        EmptyInputError: If no gene has a defined statistic
    """
    if symbol_column not in table.columns:
        raise InputValidationError(f"Column {symbol_column!r} not found in DE table")

    values = pd.DataFrame({
        "symbol": table[symbol_column],
        "value": metric_values(table, metric),
    })
    valid = values["symbol"].notna() & np.isfinite(values["value"])
    n_missing = int((~valid).sum())
    values = values.loc[valid]

    if values.empty:
        raise EmptyInputError("Ranked gene list is empty; no gene has a defined statistic")

    ranks = values.groupby("symbol", sort=False)["value"].mean()
    n_collapsed = len(values) - len(ranks)
    # mergesort keeps ties in a stable order
    ranks = ranks.sort_values(ascending=True, kind="mergesort")
    ranks.index = ranks.index.astype(str)
    ranks.index.name = "symbol"
    ranks.name = metric.value

    if n_collapsed:
        logger.info("Collapsed %d duplicate-symbol rows by mean", n_collapsed)
    if n_missing:
        logger.warning("Skipped %d rows with undefined %s or symbol", n_missing, metric.value)

    return RankedList(
        ranks=ranks,
        metric=metric.value,
        n_collapsed=n_collapsed,
        n_missing=n_missing,
    )


class GeneRanker:
    """
    Ranks genes from differential expression analysis.

    Example:
        ranker = GeneRanker(RankingConfig(metric=RankingMetric.STAT))
        ranked = ranker.rank(annotated.table)
        print(ranked.ranks.tail())
    """

    def __init__(self, config: Optional[RankingConfig] = None):
        """
        Initialize the ranker.

        Args:
            config: Ranking configuration (uses defaults if None)
        """
        self.config = config or RankingConfig()

    def rank(self, table: pd.DataFrame) -> RankedList:
        return build_ranked_list(
            table,
            metric=self.config.metric,
            symbol_column=self.config.symbol_column,
        )
