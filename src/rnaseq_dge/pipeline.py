"""
End-to-end analysis: load -> filter -> normalize -> DE -> annotate -> rank -> enrich.

Every stage receives the artifacts of the previous stages and returns a
new one; ``run_pipeline`` collects them in an immutable ``PipelineResult``.
The DE engine always receives the filtered raw counts. Normalized and
batch-corrected matrices only feed ranking annotations and figures.

Usage:
    from rnaseq_dge import PipelineConfig, run_pipeline

    config = PipelineConfig.from_json("config.json")
    result = run_pipeline(config, "counts.tsv", "metadata.tsv")
    print(result.de_result)
"""

import logging
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import pandas as pd

from .annotator import ResultAnnotator
from .config import PipelineConfig
from .data_loader import CountTable, load_dataset, validate_sample_alignment
from .de_analysis import DEBackend, DifferentialExpressionAnalyzer
from .de_result import AnnotationResult, DEResult, EnrichmentResult, RankedList
from .enrichment_analyzer import (
    EnrichmentAnalyzer,
    EnrichmentBackend,
    GeneSets,
    load_collections,
)
from .exceptions import InputValidationError
from .expression_filter import ExpressionFilter, FilterResult
from .gene_ranker import GeneRanker
from .normalizer import NormalizedData, Normalizer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_VERSIONED_PACKAGES = ["pandas", "numpy", "scipy", "statsmodels", "pydeseq2", "gseapy", "plotly"]


def library_versions() -> Dict[str, Optional[str]]:
    versions = {}
    for name in _VERSIONED_PACKAGES:
        try:
            versions[name] = version(name)
        except PackageNotFoundError:
            versions[name] = None
    return versions


@dataclass(frozen=True)
class PipelineResult:
    """Every artifact of one analysis run."""

    config: PipelineConfig
    table: CountTable
    metadata: pd.DataFrame
    filtered: FilterResult
    normalized: NormalizedData
    de_result: DEResult
    annotation: AnnotationResult
    top_genes: pd.DataFrame
    ranked: RankedList
    enrichment: Optional[EnrichmentResult] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        alpha = self.config.de.alpha
        return {
            "config": self.config.to_dict(),
            "versions": library_versions(),
            "input": {
                "n_genes": self.table.n_genes,
                "n_samples": self.table.n_samples,
                "samples": self.table.sample_ids,
            },
            "filtering": {
                "n_input": self.filtered.n_input,
                "n_kept": self.filtered.n_kept,
                "removed_by": self.filtered.removed_by(),
            },
            "size_factors": {str(k): float(v) for k, v in self.normalized.size_factors.items()},
            "batch_corrected": self.normalized.batch_corrected is not None,
            "differential_expression": self.de_result.to_dict(alpha=alpha),
            "annotation": {
                "n_annotated": len(self.annotation.table),
                "dropped": self.annotation.dropped_by_reason(),
                "top_genes": [str(g) for g in self.top_genes.index],
            },
            "ranking": {
                "metric": self.ranked.metric,
                "n_genes": len(self.ranked),
                "n_collapsed": self.ranked.n_collapsed,
                "n_missing": self.ranked.n_missing,
            },
            "enrichment": self.enrichment.to_dict(alpha=alpha) if self.enrichment else None,
        }


def run_pipeline(
    config: Optional[PipelineConfig] = None,
    counts_path: Optional[PathLike] = None,
    metadata_path: Optional[PathLike] = None,
    table: Optional[CountTable] = None,
    metadata: Optional[pd.DataFrame] = None,
    gene_sets: Optional[Mapping[str, GeneSets]] = None,
    de_backend: Optional[DEBackend] = None,
    enrichment_backend: Optional[EnrichmentBackend] = None,
) -> PipelineResult:
    """
    Run the full analysis.

    Inputs come either from files (``counts_path`` and ``metadata_path``)
    or from an already loaded ``table`` and ``metadata``.

    Args:
        config: Pipeline configuration (defaults if None)
        counts_path: Counts file (annotation columns + one column per sample)
        metadata_path: Sample metadata file
        table: Loaded count table
        metadata: Loaded sample metadata indexed by sample ID
        gene_sets: Collection name -> gene sets. Overrides ``config.gene_sets``.
        de_backend: DE engine (default: PyDESeq2)
        enrichment_backend: Enrichment engine (default: gseapy prerank)

    Returns:
        PipelineResult
    """
    config = config or PipelineConfig()

    if table is None or metadata is None:
        if counts_path is None or metadata_path is None:
            raise ValueError("Provide either counts_path and metadata_path or table and metadata")
        table, metadata = load_dataset(counts_path, metadata_path, config.input)
    else:
        table.validate()
        table = validate_sample_alignment(table, metadata, reorder=config.input.reorder_samples)

    group_column = config.de.group_column
    if group_column not in metadata.columns:
        raise InputValidationError(f"Group column {group_column!r} not found in metadata")
    groups = metadata[group_column].astype(str)

    logger.info("Step 1/6: filtering %d genes", table.n_genes)
    gene_filter = ExpressionFilter(config.gene_filter, config.expression, config.input)
    filtered = gene_filter.apply(table, groups)

    logger.info("Step 2/6: normalization")
    normalized = Normalizer(config.normalization).run(
        filtered.counts,
        metadata,
        group_column=group_column,
        batch_column=config.de.batch_column,
    )

    logger.info("Step 3/6: differential expression")
    analyzer = DifferentialExpressionAnalyzer(config.de, backend=de_backend)
    de_result = analyzer.analyze(filtered.counts, metadata)

    logger.info("Step 4/6: annotation")
    annotator = ResultAnnotator(config.annotation, symbol_column=config.input.symbol_column)
    annotation = annotator.annotate(
        de_result, filtered.table.annotation, normalized.normalized_counts
    )
    top_genes = annotator.top_genes(annotation.table)

    logger.info("Step 5/6: ranking by %s", config.ranking.metric.value)
    ranked = GeneRanker(config.ranking).rank(annotation.table)

    enrichment = None
    if gene_sets is None and config.gene_sets:
        gene_sets = load_collections(config.gene_sets)
    if gene_sets:
        logger.info("Step 6/6: enrichment against %s", ", ".join(gene_sets))
        enrichment = EnrichmentAnalyzer(config.enrichment, enrichment_backend).analyze(
            ranked, gene_sets
        )
    else:
        logger.info("Step 6/6: no gene set collections configured; enrichment skipped")

    return PipelineResult(
        config=config,
        table=table,
        metadata=metadata,
        filtered=filtered,
        normalized=normalized,
        de_result=de_result,
        annotation=annotation,
        top_genes=top_genes,
        ranked=ranked,
        enrichment=enrichment,
    )
