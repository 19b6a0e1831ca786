"""
rnaseq_dge: differential expression and pre-ranked enrichment for bulk RNA-seq.

load -> filter -> normalize -> DE -> annotate -> rank -> enrich -> report

```python
from rnaseq_dge import PipelineConfig, ReportGenerator, run_pipeline

config = PipelineConfig.from_json("config.json")
result = run_pipeline(config, "counts.tsv", "metadata.tsv")

reporter = ReportGenerator(config.report)
print(reporter.to_console_summary(result.de_result, result.enrichment))
reporter.write_report(result, "results")
```

Each stage can also be used on its own:

```python
from rnaseq_dge import DEConfig, DifferentialExpressionAnalyzer

analyzer = DifferentialExpressionAnalyzer(DEConfig(reference="control"))
de_result = analyzer.analyze(counts, metadata)
```
"""

from .annotator import AnnotationConfig, ResultAnnotator, select_top_genes
from .config import PipelineConfig
from .data_loader import CountTable, InputConfig, load_counts, load_dataset, load_metadata
from .de_analysis import DEBackend, DEConfig, DifferentialExpressionAnalyzer, PyDESeq2Backend
from .de_result import (
    AnnotationResult,
    CollectionEnrichment,
    DEProvenance,
    DEResult,
    EnrichmentProvenance,
    EnrichmentResult,
    RankedList,
)
from .enrichment_analyzer import (
    EnrichmentAnalyzer,
    EnrichmentBackend,
    EnrichmentConfig,
    GseapyPrerankBackend,
    load_collections,
    load_gene_sets,
)
from .exceptions import EmptyInputError, InputValidationError, PipelineError
from .expression_filter import (
    ExpressionFilter,
    ExpressionFilterConfig,
    FilterResult,
    GeneFilterConfig,
    expression_mask,
)
from .gene_ranker import GeneRanker, RankingConfig, RankingMetric, build_ranked_list
from .normalizer import NormalizationConfig, NormalizedData, Normalizer
from .pipeline import PipelineResult, run_pipeline
from .report_generator import (
    ReportConfig,
    ReportGenerator,
    select_for_report,
    significance_marker,
)

__version__ = "0.1.0"

__all__ = [
    # Pipeline
    "PipelineConfig",
    "PipelineResult",
    "run_pipeline",
    # Loading
    "CountTable",
    "InputConfig",
    "load_counts",
    "load_dataset",
    "load_metadata",
    # Filtering and normalization
    "ExpressionFilter",
    "ExpressionFilterConfig",
    "FilterResult",
    "GeneFilterConfig",
    "expression_mask",
    "NormalizationConfig",
    "NormalizedData",
    "Normalizer",
    # Differential expression
    "DEBackend",
    "DEConfig",
    "DifferentialExpressionAnalyzer",
    "PyDESeq2Backend",
    "DEProvenance",
    "DEResult",
    # Annotation
    "AnnotationConfig",
    "AnnotationResult",
    "ResultAnnotator",
    "select_top_genes",
    # Ranking and enrichment
    "GeneRanker",
    "RankingConfig",
    "RankingMetric",
    "RankedList",
    "build_ranked_list",
    "CollectionEnrichment",
    "EnrichmentAnalyzer",
    "EnrichmentBackend",
    "EnrichmentConfig",
    "EnrichmentProvenance",
    "EnrichmentResult",
    "GseapyPrerankBackend",
    "load_collections",
    "load_gene_sets",
    # Reporting
    "ReportConfig",
    "ReportGenerator",
    "select_for_report",
    "significance_marker",
    # Errors
    "EmptyInputError",
    "InputValidationError",
    "PipelineError",
]
