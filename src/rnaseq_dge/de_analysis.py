"""
Differential expression analysis engine.

Uses PyDESeq2 (Python implementation of DESeq2) for statistical testing.
DESeq2 handles library-size normalization internally via median-of-ratios,
models count data with a negative binomial GLM, tests the contrast with a
Wald test and adjusts p-values with Benjamini-Hochberg after independent
filtering.

The engine sits behind the ``DEBackend`` protocol: anything that turns
(raw counts, metadata, design, contrast) into a per-gene statistics table
can replace it.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Tuple

import pandas as pd

from .de_result import DE_COLUMNS, DEProvenance, DEResult
from .exceptions import EmptyInputError, InputValidationError

logger = logging.getLogger(__name__)

try:
    from pydeseq2.dds import DeseqDataSet
    from pydeseq2.default_inference import DefaultInference
    from pydeseq2.ds import DeseqStats

    HAS_PYDESEQ2 = True
except ImportError:
    HAS_PYDESEQ2 = False


@dataclass
class DEConfig:
    """
    Configuration for differential expression analysis.

    Raw integer counts are passed to the engine; normalization happens
    inside it.

    Attributes:
        group_column: Metadata column with the experimental group factor.
        reference: Baseline level. None picks the first level alphabetically,
            or the other level when only test_level is set on a two-level factor.
        test_level: Level compared against the baseline. None is allowed
            only when the factor has exactly two levels.
        batch_column: Metadata column with the batch label, if any.
        batch_in_design: Add the batch as an additive term (~batch + group).
        alpha: Significance level used by independent filtering.
        cooks_filter: Set p-values of Cook's-distance outliers to NaN.
        independent_filter: Apply independent filtering before BH.
        refit_cooks: Refit genes with outlier counts after replacement.
        n_cpus: Worker processes for PyDESeq2. Kept at 1: the pipeline runs
            single-threaded.
    """

    group_column: str = "group"
    reference: Optional[str] = None
    test_level: Optional[str] = None
    batch_column: Optional[str] = None
    batch_in_design: bool = False
    alpha: float = 0.05
    cooks_filter: bool = True
    independent_filter: bool = True
    refit_cooks: bool = True
    n_cpus: int = 1

    def __post_init__(self):
        """Validate configuration."""
        if not 0.0 < self.alpha < 1.0:
            raise ValueError("alpha must be in (0, 1)")
        if self.batch_in_design and not self.batch_column:
            raise ValueError("batch_in_design requires batch_column")
        if self.reference is not None and self.reference == self.test_level:
            raise ValueError("reference and test_level must differ")

    @property
    def design(self) -> str:
        """Design formula for the configured factors."""
        if self.batch_in_design:
            return f"~{self.batch_column} + {self.group_column}"
        return f"~{self.group_column}"

    def relevel(self, reference: str) -> "DEConfig":
        """
        Return a copy with ``reference`` as the baseline.

        Re-leveling to the current test level swaps the two, which negates
        every log2 fold change of the contrast.
        """
        test_level = self.test_level
        if test_level == reference:
            test_level = self.reference
        return replace(self, reference=reference, test_level=test_level)


class DEBackend(Protocol):
    """Protocol for differential expression engines."""

    name: str

    def fit(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        design: str,
        contrast: List[str],
        config: DEConfig,
    ) -> pd.DataFrame:
        """
        Fit the model and compute one contrast.

        Args:
            counts: Raw integer counts (genes x samples)
            metadata: Design columns, indexed by sample in ``counts`` order
            design: Design formula, e.g. "~batch + group"
            contrast: [factor, test_level, reference_level]
            config: Analysis configuration

        Returns:
            DataFrame indexed by gene with DE_COLUMNS
        """
        ...


class PyDESeq2Backend:
    """DESeq2 negative binomial GLM via PyDESeq2."""

    name = "pydeseq2"

    def __init__(self):
        if not HAS_PYDESEQ2:
            raise ImportError("pydeseq2 is required. Install with: pip install pydeseq2")

    def fit(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        design: str,
        contrast: List[str],
        config: DEConfig,
    ) -> pd.DataFrame:
        inference = DefaultInference(n_cpus=config.n_cpus)

        # PyDESeq2 expects (samples x genes)
        dds = DeseqDataSet(
            counts=counts.T,
            metadata=metadata,
            design=design,
            refit_cooks=config.refit_cooks,
            inference=inference,
            quiet=True,
        )
        dds.deseq2()

        stat_res = DeseqStats(
            dds,
            contrast=contrast,
            alpha=config.alpha,
            cooks_filter=config.cooks_filter,
            independent_filter=config.independent_filter,
            inference=inference,
            quiet=True,
        )
        stat_res.summary()
        return stat_res.results_df.copy()


class DifferentialExpressionAnalyzer:
    """
    Performs differential expression analysis between two group levels.

    Example:
        analyzer = DifferentialExpressionAnalyzer(
            DEConfig(group_column="group", reference="A", test_level="B")
        )
        result = analyzer.analyze(filtered.counts, metadata)
        print(f"Found {result.n_upregulated()} upregulated genes")

        # same contrast with B as the baseline
        flipped = analyzer.relevel("B").analyze(filtered.counts, metadata)
    """

    def __init__(
        self,
        config: Optional[DEConfig] = None,
        backend: Optional[DEBackend] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            config: Analysis configuration (uses defaults if None)
            backend: Statistical engine (default: PyDESeq2Backend)
        """
        self.config = config or DEConfig()
        self._backend = backend

    @property
    def backend(self) -> DEBackend:
        if self._backend is None:
            self._backend = PyDESeq2Backend()
        return self._backend

    def relevel(self, reference: str) -> "DifferentialExpressionAnalyzer":
        """New analyzer with ``reference`` as the baseline level."""
        return DifferentialExpressionAnalyzer(self.config.relevel(reference), self._backend)

    def resolve_levels(self, metadata: pd.DataFrame) -> Tuple[str, str]:
        """
        Determine (test_level, reference_level) from config and metadata.

        Raises:
            InputValidationError: If the group column or a named level is missing
        """
        cfg = self.config
        if cfg.group_column not in metadata.columns:
            raise InputValidationError(
                f"Group column {cfg.group_column!r} not found in metadata "
                f"(columns: {list(metadata.columns)})"
            )
        levels = sorted(metadata[cfg.group_column].dropna().astype(str).unique())
        if len(levels) < 2:
            raise InputValidationError(
                f"Group column {cfg.group_column!r} needs at least two levels, found {levels}"
            )

        if cfg.reference is not None:
            reference = cfg.reference
        elif cfg.test_level is None:
            reference = levels[0]
        elif len(levels) == 2:
            reference = next(level for level in levels if level != cfg.test_level)
        else:
            raise InputValidationError(
                f"reference must be set when {cfg.group_column!r} has more than "
                f"two levels ({levels}); pass --reference",
                details={"levels": levels},
            )

        if cfg.test_level is not None:
            test_level = cfg.test_level
        elif len(levels) == 2:
            test_level = next(level for level in levels if level != reference)
        else:
            raise InputValidationError(
                f"test_level must be set when {cfg.group_column!r} has more than "
                f"two levels ({levels})"
            )

        for level in (reference, test_level):
            if level not in levels:
                raise InputValidationError(
                    f"Level {level!r} not present in {cfg.group_column!r} (levels: {levels})",
                    details={"levels": levels},
                )
        if reference == test_level:
            raise InputValidationError("Test and reference levels must differ")
        return test_level, reference

    def _design_metadata(self, counts: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
        cfg = self.config
        missing = [s for s in counts.columns if s not in metadata.index]
        if missing:
            raise InputValidationError(
                f"Samples missing from metadata: {missing[:5]}",
                details={"samples": missing},
            )
        columns = [cfg.group_column]
        if cfg.batch_in_design:
            if cfg.batch_column not in metadata.columns:
                raise InputValidationError(
                    f"Batch column {cfg.batch_column!r} not found in metadata"
                )
            columns.insert(0, cfg.batch_column)

        design_meta = metadata.loc[list(counts.columns), columns].astype(str)
        if cfg.batch_in_design and design_meta[cfg.batch_column].nunique() < 2:
            raise InputValidationError("Batch term needs at least two batch levels")
        return design_meta

    def analyze(self, counts: pd.DataFrame, metadata: pd.DataFrame) -> DEResult:
        """
        Fit the model on raw counts and compute the configured contrast.

        Args:
            counts: Filtered raw integer counts (genes x samples)
            metadata: Sample metadata indexed by sample ID

        Returns:
            DEResult with one row per gene
        """
        if counts.empty:
            raise EmptyInputError("Count matrix is empty; nothing to test")

        cfg = self.config
        test_level, reference = self.resolve_levels(metadata)
        design_meta = self._design_metadata(counts, metadata)
        contrast = [cfg.group_column, test_level, reference]
        groups = design_meta[cfg.group_column]

        logger.info(
            "Running %s (%s): %s vs %s, %d genes x %d samples",
            self.backend.name, cfg.design, test_level, reference,
            counts.shape[0], counts.shape[1],
        )
        results = self.backend.fit(counts, design_meta, cfg.design, contrast, cfg)
        table = results.reindex(columns=DE_COLUMNS)
        table.index = table.index.astype(str)
        table.index.name = "gene_id"

        provenance = DEProvenance.create(
            design=cfg.design,
            group_column=cfg.group_column,
            test_level=test_level,
            reference_level=reference,
            test_sample_ids=list(groups.index[groups == test_level]),
            reference_sample_ids=list(groups.index[groups == reference]),
            n_genes_input=counts.shape[0],
            method=self.backend.name,
            alpha=cfg.alpha,
            cooks_filter=cfg.cooks_filter,
            independent_filter=cfg.independent_filter,
            batch_in_design=cfg.batch_in_design,
        )
        result = DEResult(table=table, provenance=provenance)

        logger.info(
            "%s complete: %d tested, %d up / %d down at padj < %s",
            self.backend.name, result.genes_tested,
            result.n_upregulated(cfg.alpha), result.n_downregulated(cfg.alpha), cfg.alpha,
        )
        return result
