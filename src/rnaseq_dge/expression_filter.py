"""
Gene filtering before normalization and differential expression.

The detection filter keeps genes with at least ``min_count`` reads in at
least as many samples as the smallest experimental group, so a gene
expressed in only one group is never discarded. Optional annotation
filters (biotype, sex chromosomes) are independent boolean masks that
are AND-combined with the detection mask.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import pandas as pd

from .data_loader import CountTable, InputConfig
from .exceptions import EmptyInputError, InputValidationError

logger = logging.getLogger(__name__)


@dataclass
class ExpressionFilterConfig:
    """
    Thresholds for the group-size aware detection filter.

    Attributes:
        min_count: Minimum raw count for a sample to count as "detected".
        min_fraction: Fraction of the smallest group size that must be
            detected. 1.0 means "all samples of the smallest group".
    """

    min_count: int = 10
    min_fraction: float = 1.0

    def __post_init__(self):
        if self.min_count < 0:
            raise ValueError("min_count must be >= 0")
        if not 0.0 < self.min_fraction <= 1.0:
            raise ValueError("min_fraction must be in (0, 1]")


@dataclass
class GeneFilterConfig:
    """Optional annotation-based gene filters.

    Attributes:
        biotypes: Biotypes to keep (case-insensitive), e.g.
            {"protein_coding"}. None disables biotype filtering.
        remove_sex_chromosomes: If True, drop genes located on the
            chromosomes listed in ``sex_chromosomes``.
        sex_chromosomes: Chromosome names to exclude ("chr" prefix optional).
    """

    biotypes: Optional[frozenset] = None
    remove_sex_chromosomes: bool = False
    sex_chromosomes: frozenset = field(default_factory=lambda: frozenset({"X", "Y"}))


@dataclass(frozen=True)
class FilterResult:
    """
    Output of the expression filter.

    ``keep`` is the combined mask aligned to the input genes; ``masks``
    holds each individual filter so callers can see why a gene went.
    """

    table: CountTable
    keep: pd.Series
    masks: Dict[str, pd.Series]

    @property
    def counts(self) -> pd.DataFrame:
        return self.table.counts

    @property
    def n_input(self) -> int:
        return len(self.keep)

    @property
    def n_kept(self) -> int:
        return int(self.keep.sum())

    @property
    def n_removed(self) -> int:
        return self.n_input - self.n_kept

    def removed_by(self) -> Dict[str, int]:
        """Number of genes each individual mask rejects."""
        return {name: int((~mask).sum()) for name, mask in self.masks.items()}


def min_detected_samples(groups: pd.Series, min_fraction: float = 1.0) -> int:
    """Required number of detected samples given the smallest group size."""
    sizes = groups.value_counts()
    if sizes.empty:
        raise EmptyInputError("No samples with a group label")
    # a single group is its own smallest group
    smallest = int(sizes.min())
    return max(1, math.ceil(min_fraction * smallest))


def expression_mask(
    counts: pd.DataFrame,
    groups: pd.Series,
    min_count: int = 10,
    min_fraction: float = 1.0,
) -> pd.Series:
    """
    Boolean keep-mask of genes detected in enough samples.

    Args:
        counts: Raw counts (genes x samples)
        groups: Group label per sample, indexed by sample ID
        min_count: Minimum count for a sample to count as detected
        min_fraction: Fraction of the smallest group that must be detected

    Returns:
        Series of bools aligned to ``counts.index``
    """
    missing = [s for s in counts.columns if s not in groups.index]
    if missing:
        raise InputValidationError(
            f"No group label for samples {missing[:5]}",
            details={"samples": missing},
        )
    groups = groups.loc[list(counts.columns)]
    min_samples = min_detected_samples(groups, min_fraction)
    detected = (counts >= min_count).sum(axis=1)
    return (detected >= min_samples).rename("expressed")


def _normalize_labels(values: Iterable[str], strip_chr: bool = False) -> set:
    labels = set()
    for v in values:
        label = str(v).strip().lower()
        if strip_chr and label.startswith("chr"):
            label = label[3:]
        labels.add(label)
    return labels


def annotation_match_mask(
    annotation: pd.Series,
    values: Iterable[str],
) -> pd.Series:
    """True where the annotation value is one of ``values`` (case-insensitive)."""
    allowed = _normalize_labels(values)
    return annotation.astype(str).str.strip().str.lower().isin(allowed)


def annotation_exclusion_mask(
    annotation: pd.Series,
    values: Iterable[str],
    strip_chr: bool = True,
) -> pd.Series:
    """
    True where the annotation value is NOT one of ``values``.

    With ``strip_chr`` both "chrX" and "X" match the category "X".
    Missing annotation values are kept.
    """
    excluded = _normalize_labels(values, strip_chr=strip_chr)
    labels = annotation.astype(str).str.strip().str.lower()
    if strip_chr:
        labels = labels.str.replace(r"^chr", "", regex=True)
    return ~labels.isin(excluded) | annotation.isna()


class ExpressionFilter:
    """
    Applies the detection filter and any enabled annotation filters.

    Example:
        flt = ExpressionFilter(GeneFilterConfig(biotypes=frozenset({"protein_coding"})))
        result = flt.apply(table, metadata["group"])
        print(result.n_kept, result.removed_by())
    """

    def __init__(
        self,
        gene_filter: Optional[GeneFilterConfig] = None,
        expression: Optional[ExpressionFilterConfig] = None,
        input_config: Optional[InputConfig] = None,
    ):
        self.gene_filter = gene_filter or GeneFilterConfig()
        self.expression = expression or ExpressionFilterConfig()
        self.input_config = input_config or InputConfig()

    def masks(self, table: CountTable, groups: pd.Series) -> Dict[str, pd.Series]:
        """Compute every enabled mask, keyed by filter name."""
        gf = self.gene_filter
        masks = {
            "expression": expression_mask(
                table.counts,
                groups,
                min_count=self.expression.min_count,
                min_fraction=self.expression.min_fraction,
            )
        }

        if gf.biotypes is not None:
            biotype = self._required_column(table, self.input_config.biotype_column)
            masks["biotype"] = annotation_match_mask(biotype, gf.biotypes)

        if gf.remove_sex_chromosomes:
            chrom = self._required_column(table, self.input_config.chromosome_column)
            masks["sex_chromosomes"] = annotation_exclusion_mask(chrom, gf.sex_chromosomes)

        return masks

    def apply(self, table: CountTable, groups: pd.Series) -> FilterResult:
        """
        Filter a count table.

        Args:
            table: Raw count table
            groups: Group label per sample

        Returns:
            FilterResult with the filtered table and all masks

        Raises:
            EmptyInputError: If no gene survives
        """
        masks = self.masks(table, groups)
        keep = pd.Series(True, index=table.counts.index, name="keep")
        for mask in masks.values():
            keep &= mask.reindex(keep.index, fill_value=False)

        result = FilterResult(table=table.subset(keep), keep=keep, masks=masks)
        for name, n in result.removed_by().items():
            logger.info("Gene filter %r rejects %d of %d genes", name, n, result.n_input)
        logger.info("Genes after filtering: %d -> %d", result.n_input, result.n_kept)

        if result.n_kept == 0:
            raise EmptyInputError("No genes left after filtering")
        return result

    @staticmethod
    def _required_column(table: CountTable, column: str) -> pd.Series:
        values = table.annotation_column(column)
        if values is None:
            raise InputValidationError(
                f"Annotation column {column!r} is required by the enabled gene filter"
            )
        return values
