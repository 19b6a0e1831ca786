"""
Report generation for differential expression and enrichment results.

Supports multiple output formats:
- JSON: Full provenance and summary for programmatic use
- TSV: DE and enrichment tables for spreadsheet analysis
- HTML: Interactive figures (PCA, heatmaps, volcano, bar charts)
- Console: Human-readable summary
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import pandas as pd

from .de_result import DEResult, EnrichmentResult

if TYPE_CHECKING:
    from .pipeline import PipelineResult

logger = logging.getLogger(__name__)


@dataclass
class ReportConfig:
    """
    Configuration for rendered tables and figures.

    Attributes:
        padj_cutoff: Adjusted p-value cutoff for bar charts and tables
        max_items: Maximum bars per chart
        heatmap_top_n: Genes shown in the heatmaps
        lfc_threshold: |log2FC| lines on the volcano plot
        pca_top_genes: Most variable genes used for PCA
        cluster_heatmap: Cluster heatmap rows/columns (False splits by group)
        write_figures: Write HTML figures in ``write_report``
        output_dir: Default output directory
    """

    padj_cutoff: float = 0.05
    max_items: int = 20
    heatmap_top_n: int = 50
    lfc_threshold: float = 1.0
    pca_top_genes: int = 500
    cluster_heatmap: bool = True
    write_figures: bool = True
    output_dir: str = "results"

    def __post_init__(self):
        if not 0.0 < self.padj_cutoff <= 1.0:
            raise ValueError("padj_cutoff must be in (0, 1]")
        if self.max_items < 1 or self.heatmap_top_n < 1:
            raise ValueError("max_items and heatmap_top_n must be positive")


def significance_marker(p) -> str:
    """Significance tier for a p-value: "***" < 0.001, "**" < 0.01, "*" < 0.05."""
    if p is None or pd.isna(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    return ""


def select_for_report(
    table: pd.DataFrame,
    effect_column: str,
    padj_column: str = "padj",
    cutoff: float = 0.05,
    max_items: int = 20,
) -> pd.DataFrame:
    """
    Rows with ``padj < cutoff``, by descending |effect|, at most ``max_items``.

    Args:
        table: DE or enrichment table
        effect_column: "log2FoldChange" or "nes"
        padj_column: Adjusted p-value column
        cutoff: Significance cutoff (strict)
        max_items: Maximum rows to keep

    Returns:
        Selected rows with a ``marker`` column
    """
    if table.empty:
        return table.assign(marker=pd.Series(dtype=str))
    keep = (table[padj_column].astype(float) < cutoff).fillna(False)
    selected = table.loc[keep]
    order = selected[effect_column].astype(float).abs().sort_values(
        ascending=False, kind="mergesort"
    ).index
    selected = selected.loc[order].head(max_items)
    return selected.assign(marker=[significance_marker(p) for p in selected[padj_column]])


class ReportGenerator:
    """
    Generates reports from pipeline results.

    Supports JSON (provenance and summary), TSV (full tables), HTML
    figures and a console summary.

    Example:
        generator = ReportGenerator()
        generator.write_report(result, "results")
        print(generator.to_console_summary(result.de_result, result.enrichment))
    """

    def __init__(self, config: Optional[ReportConfig] = None):
        self.config = config or ReportConfig()

    def to_json(
        self,
        payload: dict,
        path: Union[str, Path],
        indent: int = 2,
    ) -> None:
        """
        Write a result dictionary to a JSON file.

        Args:
            payload: Dictionary built from ``to_dict`` methods
            path: Output file path
            indent: JSON indentation level
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(payload, f, indent=indent, default=str)

    def to_tsv(
        self,
        table: pd.DataFrame,
        path: Union[str, Path],
    ) -> None:
        """
        Write a result table to a TSV file.

        List cells (leading edges) are joined with ";".

        Args:
            table: DE, annotation or enrichment table
            path: Output file path
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        out = table.copy()
        for column in out.columns:
            if out[column].map(lambda v: isinstance(v, (list, tuple))).any():
                out[column] = out[column].map(
                    lambda v: ";".join(map(str, v)) if isinstance(v, (list, tuple)) else v
                )
        out.to_csv(path, sep="\t", na_rep="NA")

    def to_console_summary(
        self,
        de_result: DEResult,
        enrichment: Optional[EnrichmentResult] = None,
        top_n: int = 10,
        show_provenance: bool = True,
    ) -> str:
        """
        Generate human-readable console summary.

        Args:
            de_result: DE result
            enrichment: Optional enrichment result
            top_n: Number of top genes/pathways to show per direction
            show_provenance: Whether to include provenance details

        Returns:
            Formatted string report
        """
        alpha = self.config.padj_cutoff
        lines = []

        lines.append("=" * 70)
        lines.append("DIFFERENTIAL EXPRESSION ANALYSIS RESULTS")
        lines.append("=" * 70)

        prov = de_result.provenance
        if show_provenance and prov is not None:
            lines.append("")
            lines.append("CONTRAST")
            lines.append(f"  {prov.test_level} vs {prov.reference_level} ({prov.group_column})")
            lines.append(f"  Design: {prov.design}")
            lines.append(f"  Samples: {prov.n_test_samples} test, {prov.n_reference_samples} reference")
            lines.append(f"  Method: {prov.method}")
            lines.append(f"  Timestamp: {prov.timestamp}")

        lines.append("")
        lines.append("-" * 70)
        lines.append("SUMMARY")
        lines.append("-" * 70)
        lines.append(f"  Genes tested: {de_result.genes_tested:,}")
        lines.append(f"  Significant (padj < {alpha}): {len(de_result.significant(alpha)):,}")
        lines.append(f"  Upregulated: {de_result.n_upregulated(alpha):,}")
        lines.append(f"  Downregulated: {de_result.n_downregulated(alpha):,}")

        top = select_for_report(
            de_result.table, "log2FoldChange", cutoff=alpha, max_items=top_n
        )
        if not top.empty:
            lines.append("")
            lines.append("-" * 70)
            lines.append(f"TOP {len(top)} GENES BY |LOG2FC|")
            lines.append("-" * 70)
            lines.append(f"  {'Gene':<18} {'Log2FC':>10} {'P-adj':>12}")
            lines.append("  " + "-" * 44)
            labels = top["symbol"] if "symbol" in top.columns else top.index.to_series()
            for (gene_id, row), label in zip(top.iterrows(), labels):
                name = label if pd.notna(label) else gene_id
                lines.append(
                    f"  {str(name):<18} {row['log2FoldChange']:>10.2f} "
                    f"{row['padj']:>12.2e} {row['marker']}"
                )

        if enrichment is not None:
            lines.append(self.format_enrichment_summary(enrichment, top_n))

        lines.append("")
        lines.append("=" * 70)

        return "\n".join(lines)

    def format_enrichment_summary(
        self,
        enrichment: EnrichmentResult,
        top_n: int = 10,
    ) -> str:
        """
        Generate human-readable enrichment summary.

        Args:
            enrichment: Enrichment result
            top_n: Number of top pathways to show per collection

        Returns:
            Formatted string report
        """
        alpha = self.config.padj_cutoff
        prov = enrichment.provenance
        lines = []

        lines.append("")
        lines.append("-" * 70)
        lines.append("ENRICHMENT ANALYSIS")
        lines.append("-" * 70)
        lines.append(f"  Backend: {prov.backend}")
        lines.append(f"  Ranking metric: {prov.metric} ({prov.n_ranked_genes:,} genes)")
        lines.append(f"  Permutations: {prov.permutation_num} (seed {prov.seed})")

        for name, coll in enrichment.collections.items():
            lines.append("")
            lines.append(
                f"  {name}: {coll.n_tested} of {coll.n_gene_sets} sets tested, "
                f"{len(coll.significant(alpha))} with padj < {alpha}"
            )
            top = select_for_report(coll.table, "nes", cutoff=alpha, max_items=top_n)
            for _, row in top.iterrows():
                pathway = row["pathway"]
                pathway = pathway[:45] + "..." if len(pathway) > 45 else pathway
                lines.append(
                    f"    {pathway:<48} NES {row['nes']:>6.2f} "
                    f"{row['padj']:>10.2e} {row['marker']}"
                )

        return "\n".join(lines)

    def write_figures(self, result: "PipelineResult", figures_dir: Path) -> List[Path]:
        """Render and save every figure of a pipeline run."""
        from .visualizer import PlotlyVisualizer

        cfg = self.config
        viz = PlotlyVisualizer()
        written = []

        def save(fig, name):
            path = figures_dir / name
            viz.save_html(fig, path)
            written.append(path)

        groups = result.metadata[result.config.de.group_column]
        batch_column = result.config.de.batch_column
        batches = result.metadata[batch_column] if batch_column else None
        display = result.normalized.display_matrix

        save(viz.pca_plot(display, groups, batches, n_top=cfg.pca_top_genes), "pca.html")

        table = result.annotation.table
        top_genes = list(select_for_report(
            table, "log2FoldChange", cutoff=cfg.padj_cutoff, max_items=cfg.heatmap_top_n
        ).index)
        labels = table["symbol"]
        for zscore, name in ((False, "heatmap_normalized.html"), (True, "heatmap_zscore.html")):
            fig = viz.expression_heatmap(
                display, top_genes, groups,
                zscore=zscore, cluster=cfg.cluster_heatmap, labels=labels,
            )
            save(fig, name)

        save(
            viz.volcano_plot(table, lfc_threshold=cfg.lfc_threshold, padj_threshold=cfg.padj_cutoff),
            "volcano.html",
        )
        de_top = select_for_report(
            table, "log2FoldChange", cutoff=cfg.padj_cutoff, max_items=cfg.max_items
        )
        save(
            viz.effect_bar_chart(
                de_top, "symbol", "log2FoldChange",
                title="Top differentially expressed genes", effect_label="log2 fold change",
            ),
            "de_top_genes.html",
        )

        if result.enrichment is not None:
            for name, coll in result.enrichment.collections.items():
                top = select_for_report(
                    coll.table, "nes", cutoff=cfg.padj_cutoff, max_items=cfg.max_items
                )
                save(
                    viz.effect_bar_chart(
                        top, "pathway", "nes", title=f"{name}: enriched pathways",
                        effect_label="NES",
                    ),
                    f"enrichment_{name}.html",
                )
                save(
                    viz.data_table(
                        top.set_index("pathway"),
                        columns=["nes", "padj", "size", "direction", "marker"],
                        title=f"{name}: enriched pathways",
                    ),
                    f"enrichment_{name}_table.html",
                )
        return written

    def write_report(
        self,
        result: "PipelineResult",
        output_dir: Optional[Union[str, Path]] = None,
    ) -> Dict[str, List[Path]]:
        """
        Write all tables, figures and the JSON summary of a pipeline run.

        Layout::

            <output_dir>/tables/*.tsv
            <output_dir>/figures/*.html
            <output_dir>/summary.json

        Args:
            result: Pipeline result
            output_dir: Output directory (default: ``config.output_dir``)

        Returns:
            Written paths by kind ("tables", "figures", "summary")
        """
        out = Path(output_dir or self.config.output_dir)
        tables_dir = out / "tables"
        written: Dict[str, List[Path]] = {"tables": [], "figures": [], "summary": []}

        tables = {
            "de_results.tsv": result.annotation.table,
            "de_dropped.tsv": result.annotation.dropped,
            "top_genes.tsv": result.top_genes,
            "ranked_genes.tsv": result.ranked.ranks.to_frame() if result.ranked else None,
        }
        if result.enrichment is not None:
            for name, coll in result.enrichment.collections.items():
                tables[f"enrichment_{name}.tsv"] = coll.table.set_index("pathway")
        for name, table in tables.items():
            if table is None:
                continue
            path = tables_dir / name
            self.to_tsv(table, path)
            written["tables"].append(path)

        if self.config.write_figures:
            written["figures"] = self.write_figures(result, out / "figures")

        summary_path = out / "summary.json"
        self.to_json(result.to_dict(), summary_path)
        written["summary"].append(summary_path)

        logger.info(
            "Report written to %s: %d tables, %d figures",
            out, len(written["tables"]), len(written["figures"]),
        )
        return written
