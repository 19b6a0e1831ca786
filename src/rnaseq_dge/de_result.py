"""
Result dataclasses for differential expression and enrichment analysis.

Every stage returns one of these artifacts and never modifies it
afterwards. Tables are pandas DataFrames using the DESeq2 column names
(``baseMean``, ``log2FoldChange``, ``lfcSE``, ``stat``, ``pvalue``,
``padj``) so they can be handed to plotting and export code unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

DE_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]

ENRICHMENT_COLUMNS = [
    "pathway",
    "es",
    "nes",
    "pvalue",
    "padj",
    "fdr_qval",
    "size",
    "leading_edge",
    "direction",
]


def _clean(value):
    """Convert numpy scalars and NaN to JSON-friendly values."""
    if isinstance(value, (np.floating, float)):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.integer):
        return int(value)
    return value


@dataclass
class DEProvenance:
    """
    Provenance record for a differential expression analysis.

    Captures the parameters needed to reproduce the contrast.
    """

    timestamp: str
    design: str
    group_column: str
    test_level: str
    reference_level: str
    n_test_samples: int
    n_reference_samples: int
    test_sample_ids: List[str]
    reference_sample_ids: List[str]
    n_genes_input: int
    method: str
    parameters: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        design: str,
        group_column: str,
        test_level: str,
        reference_level: str,
        test_sample_ids: List[str],
        reference_sample_ids: List[str],
        n_genes_input: int,
        method: str,
        **parameters,
    ) -> "DEProvenance":
        """Create a provenance record with current timestamp."""
        return cls(
            timestamp=datetime.now().isoformat(),
            design=design,
            group_column=group_column,
            test_level=test_level,
            reference_level=reference_level,
            n_test_samples=len(test_sample_ids),
            n_reference_samples=len(reference_sample_ids),
            test_sample_ids=list(test_sample_ids),
            reference_sample_ids=list(reference_sample_ids),
            n_genes_input=n_genes_input,
            method=method,
            parameters=dict(parameters),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "design": self.design,
            "contrast": {
                "factor": self.group_column,
                "test": self.test_level,
                "reference": self.reference_level,
            },
            "samples": {
                "n_test": self.n_test_samples,
                "n_reference": self.n_reference_samples,
                "test_ids": self.test_sample_ids,
                "reference_ids": self.reference_sample_ids,
            },
            "n_genes_input": self.n_genes_input,
            "method": self.method,
            "parameters": {k: _clean(v) for k, v in self.parameters.items()},
        }


@dataclass(frozen=True)
class DEResult:
    """
    Differential expression result for one contrast (test vs reference).

    ``table`` has one row per gene that went through the fit, indexed by
    gene ID. ``padj`` is NaN for genes removed by independent filtering
    or Cook's outlier detection.
    """

    table: pd.DataFrame
    provenance: Optional[DEProvenance] = None

    @property
    def genes_tested(self) -> int:
        return len(self.table)

    @property
    def contrast(self) -> List[str]:
        if self.provenance is None:
            return []
        p = self.provenance
        return [p.group_column, p.test_level, p.reference_level]

    def significant(self, alpha: float = 0.05, lfc_threshold: float = 0.0) -> pd.DataFrame:
        """Rows with ``padj < alpha`` and ``|log2FoldChange| >= lfc_threshold``."""
        t = self.table
        mask = (t["padj"] < alpha) & (t["log2FoldChange"].abs() >= lfc_threshold)
        return t.loc[mask.fillna(False)]

    def n_upregulated(self, alpha: float = 0.05, lfc_threshold: float = 0.0) -> int:
        return int((self.significant(alpha, lfc_threshold)["log2FoldChange"] > 0).sum())

    def n_downregulated(self, alpha: float = 0.05, lfc_threshold: float = 0.0) -> int:
        return int((self.significant(alpha, lfc_threshold)["log2FoldChange"] < 0).sum())

    def to_dict(self, alpha: float = 0.05, lfc_threshold: float = 0.0) -> dict:
        """Convert to dictionary for JSON serialization (significant genes only)."""
        sig = self.significant(alpha, lfc_threshold)
        return {
            "provenance": self.provenance.to_dict() if self.provenance else None,
            "summary": {
                "genes_tested": self.genes_tested,
                "genes_significant": len(sig),
                "n_upregulated": self.n_upregulated(alpha, lfc_threshold),
                "n_downregulated": self.n_downregulated(alpha, lfc_threshold),
                "alpha": alpha,
                "lfc_threshold": lfc_threshold,
            },
            "significant": [
                {"gene_id": str(gid), **{k: _clean(v) for k, v in row.items()}}
                for gid, row in sig.iterrows()
            ],
        }

    def __repr__(self) -> str:
        return (
            f"DEResult(contrast={self.contrast}, genes_tested={self.genes_tested}, "
            f"up={self.n_upregulated()}, down={self.n_downregulated()})"
        )


@dataclass(frozen=True)
class AnnotationResult:
    """
    DE table joined to gene symbols.

    Rows that could not be annotated or lack a statistic are moved to
    ``dropped`` with a ``reason`` column instead of disappearing.
    """

    table: pd.DataFrame
    dropped: pd.DataFrame

    @property
    def n_dropped(self) -> int:
        return len(self.dropped)

    def dropped_by_reason(self) -> Dict[str, int]:
        if self.dropped.empty:
            return {}
        return {str(k): int(v) for k, v in self.dropped["reason"].value_counts().items()}


@dataclass(frozen=True)
class RankedList:
    """
    Gene symbol -> ranking statistic, unique and sorted ascending.

    ``n_collapsed`` counts rows merged into another row with the same
    symbol; ``n_missing`` counts rows skipped for an undefined statistic.
    """

    ranks: pd.Series
    metric: str
    n_collapsed: int = 0
    n_missing: int = 0

    def __len__(self) -> int:
        return len(self.ranks)

    @property
    def genes(self) -> List[str]:
        return list(self.ranks.index)


@dataclass
class EnrichmentProvenance:
    """
    Provenance record for a pre-ranked enrichment run.
    """

    backend: str
    metric: str
    n_ranked_genes: int
    permutation_num: int
    min_size: int
    max_size: int
    seed: int
    correction_method: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "backend": self.backend,
            "metric": self.metric,
            "n_ranked_genes": self.n_ranked_genes,
            "permutation_num": self.permutation_num,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "seed": self.seed,
            "correction_method": self.correction_method,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CollectionEnrichment:
    """
    Enrichment results for one pathway collection (e.g. Hallmark).

    ``table`` has the columns in ENRICHMENT_COLUMNS; ``padj`` is
    corrected within this collection only.
    """

    collection: str
    table: pd.DataFrame
    n_gene_sets: int

    @property
    def n_tested(self) -> int:
        return len(self.table)

    def significant(self, alpha: float = 0.05) -> pd.DataFrame:
        return self.table.loc[(self.table["padj"] < alpha).fillna(False)]

    def to_dict(self, alpha: float = 0.05) -> dict:
        sig = self.significant(alpha)
        return {
            "collection": self.collection,
            "n_gene_sets": self.n_gene_sets,
            "n_tested": self.n_tested,
            "n_significant": len(sig),
            "pathways": [
                {k: (list(v) if k == "leading_edge" else _clean(v)) for k, v in row.items()}
                for _, row in sig.iterrows()
            ],
        }


@dataclass(frozen=True)
class EnrichmentResult:
    """
    Enrichment results for every collection run against one ranked list.
    """

    provenance: EnrichmentProvenance
    collections: Dict[str, CollectionEnrichment]

    def __getitem__(self, name: str) -> CollectionEnrichment:
        return self.collections[name]

    def to_dict(self, alpha: float = 0.05) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "provenance": self.provenance.to_dict(),
            "collections": {
                name: c.to_dict(alpha) for name, c in self.collections.items()
            },
        }

    def __repr__(self) -> str:
        per = ", ".join(f"{n}={len(c.significant())}" for n, c in self.collections.items())
        return f"EnrichmentResult({per})"
