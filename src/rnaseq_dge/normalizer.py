"""
Count normalization for visualization and ranking.

Uses PyDESeq2 for the median-of-ratios size factors and the
variance-stabilizing transform (VST). The differential expression test
never sees these matrices: it receives raw counts and normalizes
internally.

Batch removal here is visualization-only. It regresses the additive
batch effect out of the VST matrix (sum-to-zero batch coding, with the
experimental group optionally kept in the model so its effect is not
removed along with the batch).
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .exceptions import EmptyInputError, InputValidationError

logger = logging.getLogger(__name__)

try:
    from pydeseq2.dds import DeseqDataSet
    from pydeseq2.default_inference import DefaultInference
    from pydeseq2.preprocessing import deseq2_norm

    HAS_PYDESEQ2 = True
except ImportError:
    HAS_PYDESEQ2 = False


@dataclass
class NormalizationConfig:
    """
    Configuration for normalization.

    Attributes:
        vst_blind: Fit the VST dispersion trend without the design
            (DESeq2 ``blind=TRUE``), appropriate for QC plots.
        vst_fit_type: "parametric", "mean", or None for the PyDESeq2 default.
        remove_batch_effect: Produce a batch-corrected copy of the VST
            matrix for plots. Requires a batch column.
        preserve_group: Keep the group term in the batch-removal model.
    """

    vst_blind: bool = True
    vst_fit_type: Optional[str] = None
    remove_batch_effect: bool = False
    preserve_group: bool = True


@dataclass(frozen=True)
class NormalizedData:
    """Normalized views of one filtered count matrix (all genes x samples)."""

    size_factors: pd.Series
    normalized_counts: pd.DataFrame
    vst: pd.DataFrame
    batch_corrected: Optional[pd.DataFrame] = None

    @property
    def display_matrix(self) -> pd.DataFrame:
        """Matrix to plot: batch-corrected VST when available, else VST."""
        return self.batch_corrected if self.batch_corrected is not None else self.vst


def _require_pydeseq2():
    if not HAS_PYDESEQ2:
        raise ImportError("pydeseq2 is required. Install with: pip install pydeseq2")


def check_no_all_zero_genes(counts: pd.DataFrame) -> None:
    """Raise InputValidationError if any gene has zero counts in every sample."""
    if counts.empty:
        raise EmptyInputError("Count matrix is empty")
    all_zero = counts.index[(counts == 0).all(axis=1)]
    if len(all_zero):
        raise InputValidationError(
            f"{len(all_zero)} genes have zero counts in all samples "
            f"(e.g. {list(all_zero[:5])}); filter them before normalization",
            details={"all_zero_genes": list(all_zero)},
        )


def estimate_size_factors(counts: pd.DataFrame) -> pd.Series:
    """
    Median-of-ratios size factors, one per sample.

    Args:
        counts: Raw counts (genes x samples) without all-zero genes

    Returns:
        Series of strictly positive size factors indexed by sample ID
    """
    _require_pydeseq2()
    check_no_all_zero_genes(counts)

    _, factors = deseq2_norm(counts.T.to_numpy(dtype=float))
    factors = pd.Series(np.asarray(factors, dtype=float), index=counts.columns, name="size_factor")

    if not np.isfinite(factors).all() or (factors <= 0).any():
        # happens when no gene is expressed in every sample
        raise InputValidationError(
            "Size factors are undefined: no gene has non-zero counts in all samples",
            details={"size_factors": factors.to_dict()},
        )
    logger.debug("Size factors: %s", factors.round(3).to_dict())
    return factors


def normalize_counts(counts: pd.DataFrame, size_factors: pd.Series) -> pd.DataFrame:
    """Divide each sample's counts by its size factor."""
    return counts.div(size_factors.loc[counts.columns], axis=1)


def variance_stabilize(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    design: str = "~1",
    blind: bool = True,
    fit_type: Optional[str] = None,
) -> pd.DataFrame:
    """
    Variance-stabilizing transform of raw counts via PyDESeq2.

    Args:
        counts: Raw counts (genes x samples)
        metadata: Sample metadata containing the design columns
        design: Design formula used when ``blind`` is False
        blind: Ignore the design when fitting the dispersion trend
        fit_type: Dispersion trend fit type passed to PyDESeq2

    Returns:
        VST matrix with the same shape and labels as ``counts``
    """
    _require_pydeseq2()
    check_no_all_zero_genes(counts)

    # only the design columns; other metadata may hold NaN or free text
    terms = [c for c in re.findall(r"[A-Za-z_][\w.]*", design) if c in metadata.columns]
    dds = DeseqDataSet(
        counts=counts.T,
        metadata=metadata.loc[counts.columns, terms].astype(str),
        design=design,
        inference=DefaultInference(n_cpus=1),
        quiet=True,
    )
    dds.vst(use_design=not blind, fit_type=fit_type)
    vst = np.asarray(dds.layers["vst_counts"], dtype=float)
    return pd.DataFrame(vst.T, index=counts.index, columns=counts.columns)


def _sum_to_zero_coding(labels: pd.Series) -> np.ndarray:
    """Sum-to-zero contrast columns for a categorical factor (k levels -> k-1 columns)."""
    levels = sorted(labels.astype(str).unique())
    coding = np.zeros((len(labels), max(len(levels) - 1, 0)))
    values = labels.astype(str).to_numpy()
    for j, level in enumerate(levels[:-1]):
        coding[values == level, j] = 1.0
    if len(levels) > 1:
        coding[values == levels[-1], :] = -1.0
    return coding


def remove_batch_effect(
    matrix: pd.DataFrame,
    batch: pd.Series,
    preserve: Optional[pd.Series] = None,
) -> pd.DataFrame:
    """
    Remove an additive batch effect from a log-scale expression matrix.

    Fits ``expression ~ preserve + batch`` per gene by least squares and
    subtracts the fitted batch component only.

    Args:
        matrix: Log-scale expression (genes x samples), e.g. VST output
        batch: Batch label per sample
        preserve: Optional group label per sample whose effect is kept

    Returns:
        New matrix with the batch effect removed
    """
    samples = list(matrix.columns)
    batch = batch.loc[samples]
    batch_coding = _sum_to_zero_coding(batch)
    if batch_coding.shape[1] == 0:
        logger.warning("Only one batch level present; nothing to remove")
        return matrix.copy()

    design = np.ones((len(samples), 1))
    if preserve is not None:
        dummies = pd.get_dummies(preserve.loc[samples].astype(str), drop_first=True)
        design = np.hstack([design, dummies.to_numpy(dtype=float)])

    X = np.hstack([design, batch_coding])
    Y = matrix.to_numpy(dtype=float).T
    beta, *_ = np.linalg.lstsq(X, Y, rcond=None)
    batch_effect = batch_coding @ beta[design.shape[1]:]

    return pd.DataFrame((Y - batch_effect).T, index=matrix.index, columns=matrix.columns)


class Normalizer:
    """
    Produces size factors, normalized counts and the VST matrix.

    Example:
        normalizer = Normalizer(NormalizationConfig(remove_batch_effect=True))
        normalized = normalizer.run(filtered.counts, metadata,
                                    group_column="group", batch_column="batch")
    """

    def __init__(self, config: Optional[NormalizationConfig] = None):
        self.config = config or NormalizationConfig()

    def run(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        group_column: str = "group",
        batch_column: Optional[str] = None,
    ) -> NormalizedData:
        """
        Normalize a filtered raw count matrix.

        Args:
            counts: Filtered raw counts (genes x samples)
            metadata: Sample metadata aligned to ``counts`` columns
            group_column: Experimental group column
            batch_column: Batch column (required for batch removal)

        Returns:
            NormalizedData artifact
        """
        logger.info("Estimating size factors for %d samples", counts.shape[1])
        size_factors = estimate_size_factors(counts)
        normalized = normalize_counts(counts, size_factors)

        design = f"~{group_column}"
        logger.info("Computing VST (%s)", "blind" if self.config.vst_blind else design)
        vst = variance_stabilize(
            counts,
            metadata,
            design=design,
            blind=self.config.vst_blind,
            fit_type=self.config.vst_fit_type,
        )

        corrected = None
        if self.config.remove_batch_effect:
            if not batch_column or batch_column not in metadata.columns:
                raise InputValidationError(
                    f"Batch removal requested but batch column {batch_column!r} "
                    "is not in the metadata"
                )
            preserve = metadata[group_column] if self.config.preserve_group else None
            corrected = remove_batch_effect(vst, metadata[batch_column], preserve=preserve)
            logger.info("Removed %r batch effect from the VST matrix", batch_column)

        return NormalizedData(
            size_factors=size_factors,
            normalized_counts=normalized,
            vst=vst,
            batch_corrected=corrected,
        )
