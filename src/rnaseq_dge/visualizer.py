"""
Interactive Plotly figures for differential expression and enrichment results.

This module provides the figures of an analysis report:
- PCA of samples on the most variable genes
- Expression heatmaps (normalized units or row z-scores) with a group strip
- Volcano plot of a DE contrast
- Horizontal effect bar charts with significance markers
- Companion data tables

All figures are interactive and can be saved as standalone HTML files
or displayed in Jupyter notebooks.

Usage:
    from rnaseq_dge.visualizer import PlotlyVisualizer

    viz = PlotlyVisualizer()
    fig = viz.volcano_plot(annotated.table)
    viz.save_html(fig, "results/figures/volcano.html")
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

try:
    import plotly.graph_objects as go
    from plotly.subplots import make_subplots
    HAS_PLOTLY = True
except ImportError:
    HAS_PLOTLY = False

from .report_generator import significance_marker

logger = logging.getLogger(__name__)


# Color schemes
COLORS = {
    # Expression direction
    "up": "#e74c3c",      # Red (up-regulated / positive NES)
    "down": "#3498db",    # Blue (down-regulated / negative NES)
    "neutral": "#95a5a6", # Gray

    # Group palette, cycled for the annotation strip and PCA
    "groups": [
        "#1f77b4", "#ff7f0e", "#2ca02c", "#9467bd",
        "#d62728", "#8c564b", "#e377c2", "#17becf",
    ],
}

BATCH_SYMBOLS = ["circle", "square", "diamond", "triangle-up", "cross", "x"]


def zscore_rows(matrix: pd.DataFrame) -> pd.DataFrame:
    """Row-standardize a genes x samples matrix; constant rows become 0."""
    from scipy.stats import zscore

    values = zscore(matrix.to_numpy(dtype=float), axis=1, ddof=1)
    return pd.DataFrame(
        np.nan_to_num(values, nan=0.0), index=matrix.index, columns=matrix.columns
    )


def cluster_order(values: np.ndarray, method: str = "average") -> List[int]:
    """Leaf order of a hierarchical clustering of the rows of ``values``."""
    from scipy.cluster.hierarchy import leaves_list, linkage

    if values.shape[0] < 3:
        return list(range(values.shape[0]))
    return list(leaves_list(linkage(values, method=method, metric="euclidean")))


def top_variance_genes(matrix: pd.DataFrame, n_top: int = 500) -> pd.Index:
    variances = matrix.var(axis=1, ddof=1).sort_values(ascending=False, kind="mergesort")
    return variances.index[:n_top]


class PlotlyVisualizer:
    """Interactive visualization components for RNA-seq analysis reports."""

    def __init__(self, template: str = "plotly_white"):
        """
        Initialize visualizer.

        Args:
            template: Plotly template (plotly_white, plotly_dark, ggplot2, etc.)
        """
        if not HAS_PLOTLY:
            raise ImportError("plotly is required. Install with: pip install plotly")
        self.template = template

    def _group_colors(self, levels: Sequence[str]) -> dict:
        palette = COLORS["groups"]
        return {level: palette[i % len(palette)] for i, level in enumerate(levels)}

    def pca_plot(
        self,
        matrix: pd.DataFrame,
        groups: pd.Series,
        batches: Optional[pd.Series] = None,
        n_top: int = 500,
        title: str = "PCA of samples",
        height: int = 600,
        width: int = 800,
    ) -> go.Figure:
        """
        Scatter of the first two principal components of the samples.

        Args:
            matrix: VST (optionally batch-corrected) matrix, genes x samples
            groups: Group label per sample
            batches: Optional batch label per sample, shown as marker symbol
            n_top: Number of most variable genes used
            title: Chart title
            height: Figure height
            width: Figure width

        Returns:
            Plotly Figure object
        """
        if matrix.shape[1] < 2 or matrix.empty:
            return self._empty_figure("PCA needs at least two samples")

        top = top_variance_genes(matrix, n_top)
        # samples x genes; PCA centers each gene
        x = matrix.loc[top].T.to_numpy(dtype=float)
        pca = PCA(n_components=min(2, x.shape[0], x.shape[1]))
        pcs = pca.fit_transform(x)
        explained = np.nan_to_num(pca.explained_variance_ratio_ * 100)
        if pcs.shape[1] < 2:
            pcs = np.column_stack([pcs[:, 0], np.zeros(pcs.shape[0])])
        explained = np.append(explained, [0.0, 0.0])[:2]

        samples = list(matrix.columns)
        groups = groups.reindex(samples).astype(str)
        colors = self._group_colors(sorted(groups.unique()))
        if batches is not None:
            batches = batches.reindex(samples).astype(str)
            batch_levels = sorted(batches.unique())

        fig = go.Figure()
        for level, color in colors.items():
            idx = [i for i in range(len(samples)) if groups.iloc[i] == level]
            symbols = "circle"
            if batches is not None:
                symbols = [
                    BATCH_SYMBOLS[batch_levels.index(batches.iloc[i]) % len(BATCH_SYMBOLS)]
                    for i in idx
                ]
            fig.add_trace(go.Scatter(
                x=pcs[idx, 0],
                y=pcs[idx, 1],
                mode="markers",
                name=level,
                marker=dict(color=color, size=12, symbol=symbols, line=dict(width=1, color="white")),
                text=[samples[i] for i in idx],
                hovertemplate="%{text}<br>PC1: %{x:.2f}<br>PC2: %{y:.2f}<extra></extra>",
            ))

        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            xaxis_title=f"PC1 ({explained[0]:.1f}%)",
            yaxis_title=f"PC2 ({explained[1]:.1f}%)",
            template=self.template,
            height=height,
            width=width,
            legend_title_text="Group",
        )
        return fig

    def expression_heatmap(
        self,
        matrix: pd.DataFrame,
        genes: Optional[Sequence[str]] = None,
        groups: Optional[pd.Series] = None,
        zscore: bool = False,
        cluster: bool = True,
        labels: Optional[pd.Series] = None,
        title: Optional[str] = None,
        height: int = 800,
        width: int = 900,
    ) -> go.Figure:
        """
        Heatmap of expression for a gene list with a group annotation strip.

        Clustered mode orders genes and samples by hierarchical clustering.
        Otherwise samples are split by group and genes keep their input order.

        Args:
            matrix: Normalized expression, genes x samples
            genes: Genes (row labels of ``matrix``) to show; all if None
            groups: Group label per sample for the annotation strip
            zscore: Show row z-scores instead of normalized units
            cluster: Cluster rows and columns
            labels: Optional display label per gene (e.g. symbols)
            title: Chart title
            height: Figure height
            width: Figure width

        Returns:
            Plotly Figure object
        """
        if genes is not None:
            genes = [g for g in genes if g in matrix.index]
            matrix = matrix.loc[genes]
        if matrix.empty:
            return self._empty_figure("No genes to display")

        data = zscore_rows(matrix) if zscore else matrix.astype(float)

        if groups is not None:
            groups = groups.reindex(data.columns).astype(str)

        if cluster:
            row_order = cluster_order(data.to_numpy())
            col_order = cluster_order(data.to_numpy().T)
            data = data.iloc[row_order, col_order]
        elif groups is not None:
            # group split, stable within group
            split = groups.sort_values(kind="mergesort").index
            data = data[split]

        row_labels = list(data.index)
        if labels is not None:
            row_labels = [
                str(labels.get(g)) if pd.notna(labels.get(g)) else str(g) for g in data.index
            ]

        if title is None:
            title = "Expression (row z-score)" if zscore else "Expression (normalized)"
        colorscale = "RdBu_r" if zscore else "Viridis"
        heatmap = go.Heatmap(
            z=data.to_numpy(),
            x=list(data.columns),
            y=row_labels,
            colorscale=colorscale,
            zmid=0 if zscore else None,
            colorbar=dict(title="z-score" if zscore else "value"),
            hovertemplate="Gene: %{y}<br>Sample: %{x}<br>Value: %{z:.2f}<extra></extra>",
        )

        if groups is None:
            fig = go.Figure(heatmap)
        else:
            sample_groups = groups.reindex(data.columns)
            levels = sorted(sample_groups.unique())
            colors = self._group_colors(levels)
            codes = [levels.index(g) for g in sample_groups]
            n = max(len(levels) - 1, 1)
            strip_scale = []
            for i, level in enumerate(levels):
                strip_scale.append([i / n, colors[level]])
            if len(levels) == 1:
                strip_scale = [[0.0, colors[levels[0]]], [1.0, colors[levels[0]]]]

            fig = make_subplots(
                rows=2, cols=1,
                shared_xaxes=True,
                row_heights=[0.04, 0.96],
                vertical_spacing=0.01,
            )
            fig.add_trace(go.Heatmap(
                z=[codes],
                x=list(data.columns),
                y=["group"],
                text=[list(sample_groups)],
                colorscale=strip_scale,
                showscale=False,
                hovertemplate="Sample: %{x}<br>Group: %{text}<extra></extra>",
            ), row=1, col=1)
            fig.add_trace(heatmap, row=2, col=1)

        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            template=self.template,
            height=height,
            width=width,
        )
        fig.update_yaxes(autorange="reversed")
        return fig

    def volcano_plot(
        self,
        table: pd.DataFrame,
        lfc_threshold: float = 1.0,
        padj_threshold: float = 0.05,
        label_column: str = "symbol",
        n_labels: int = 10,
        title: str = "Volcano plot",
        height: int = 650,
        width: int = 850,
    ) -> go.Figure:
        """
        Volcano plot of log2 fold change against -log10 adjusted p-value.

        Args:
            table: DE table with log2FoldChange and padj
            lfc_threshold: |log2FC| cutoff drawn as vertical lines
            padj_threshold: padj cutoff drawn as a horizontal line
            label_column: Column used for gene labels
            n_labels: Number of most significant genes to annotate
            title: Chart title
            height: Figure height
            width: Figure width

        Returns:
            Plotly Figure object
        """
        data = table.dropna(subset=["log2FoldChange", "padj"])
        if data.empty:
            return self._empty_figure("No genes with adjusted p-values")

        lfc = data["log2FoldChange"]
        neg_log_p = -np.log10(data["padj"].clip(lower=1e-300))
        significant = data["padj"] < padj_threshold
        status = np.where(
            significant & (lfc >= lfc_threshold), "up",
            np.where(significant & (lfc <= -lfc_threshold), "down", "neutral"),
        )
        if label_column in data.columns:
            names = data[label_column].where(data[label_column].notna(), data.index.to_series())
        else:
            names = data.index.to_series()
        names = names.astype(str)

        fig = go.Figure()
        for key, label in (("neutral", "Not significant"), ("down", "Down"), ("up", "Up")):
            mask = status == key
            fig.add_trace(go.Scatter(
                x=lfc[mask],
                y=neg_log_p[mask],
                mode="markers",
                name=f"{label} ({int(mask.sum())})",
                marker=dict(color=COLORS[key], size=6, opacity=0.7 if key == "neutral" else 0.9),
                text=names[mask],
                hovertemplate="%{text}<br>log2FC: %{x:.2f}<br>-log10 padj: %{y:.2f}<extra></extra>",
            ))

        top = data.loc[significant].sort_values("padj").head(n_labels)
        for gene_id in top.index:
            fig.add_annotation(
                x=float(lfc[gene_id]),
                y=float(neg_log_p[gene_id]),
                text=names[gene_id],
                showarrow=True,
                arrowhead=0,
                ax=0,
                ay=-20,
                font=dict(size=10),
            )

        threshold_y = -np.log10(padj_threshold)
        fig.add_hline(y=threshold_y, line_dash="dash", line_color="gray", opacity=0.5)
        fig.add_vline(x=lfc_threshold, line_dash="dash", line_color="gray", opacity=0.5)
        fig.add_vline(x=-lfc_threshold, line_dash="dash", line_color="gray", opacity=0.5)

        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            xaxis_title="log2 fold change",
            yaxis_title="-log10 adjusted p-value",
            template=self.template,
            height=height,
            width=width,
        )
        return fig

    def effect_bar_chart(
        self,
        table: pd.DataFrame,
        label_column: str,
        effect_column: str,
        padj_column: str = "padj",
        title: str = "Top results",
        effect_label: Optional[str] = None,
        height: Optional[int] = None,
        width: int = 900,
    ) -> go.Figure:
        """
        Horizontal bar chart of an effect (log2FC or NES) with significance markers.

        Expects a table already filtered and ordered, e.g. by ``select_for_report``.
        The first row is drawn at the top.

        Args:
            table: Rows to draw
            label_column: Column with bar labels (gene symbol or pathway)
            effect_column: Column with the effect size
            padj_column: Column with adjusted p-values for the markers
            title: Chart title
            effect_label: Axis title (defaults to ``effect_column``)
            height: Figure height (scales with the number of bars if None)
            width: Figure width

        Returns:
            Plotly Figure object
        """
        if table.empty:
            return self._empty_figure("No significant results to display")

        # plotly draws the first category at the bottom
        rows = table.iloc[::-1]
        effects = rows[effect_column].astype(float)
        markers = [significance_marker(p) for p in rows[padj_column]]

        fig = go.Figure(go.Bar(
            x=effects,
            y=rows[label_column].astype(str),
            orientation="h",
            marker_color=[COLORS["up"] if e > 0 else COLORS["down"] for e in effects],
            text=[f"{e:.2f} {m}".strip() for e, m in zip(effects, markers)],
            textposition="outside",
            customdata=rows[padj_column],
            hovertemplate="%{y}<br>" + (effect_label or effect_column)
            + ": %{x:.2f}<br>padj: %{customdata:.2e}<extra></extra>",
        ))

        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            xaxis_title=effect_label or effect_column,
            template=self.template,
            height=height or max(400, 28 * len(rows) + 150),
            width=width,
            showlegend=False,
        )
        fig.add_vline(x=0, line_dash="dash", line_color="gray", opacity=0.5)
        return fig

    def data_table(
        self,
        table: pd.DataFrame,
        columns: Optional[List[str]] = None,
        title: Optional[str] = None,
        float_format: str = "{:.3g}",
    ) -> go.Figure:
        """
        Table figure companion to a bar chart.

        Args:
            table: Rows to show
            columns: Columns to include (all if None); the index is shown first
            title: Chart title
            float_format: Format applied to float cells

        Returns:
            Plotly Figure object
        """
        columns = columns or list(table.columns)
        data = table[columns]

        def fmt(value):
            if isinstance(value, (list, tuple)):
                return ", ".join(map(str, value))
            if isinstance(value, (float, np.floating)):
                return "NA" if np.isnan(value) else float_format.format(value)
            if value is None or value is pd.NA:
                return "NA"
            return str(value)

        header = [data.index.name or ""] + columns
        cells = [[str(i) for i in data.index]]
        cells += [[fmt(v) for v in data[c]] for c in columns]

        fig = go.Figure(go.Table(
            header=dict(values=header, fill_color="#ecf0f1", align="left"),
            cells=dict(values=cells, align="left"),
        ))
        fig.update_layout(
            title=dict(text=title, x=0.5) if title else None,
            template=self.template,
        )
        return fig

    def _empty_figure(self, message: str) -> go.Figure:
        """Create an empty figure with a message."""
        fig = go.Figure()
        fig.add_annotation(
            text=message,
            xref="paper", yref="paper",
            x=0.5, y=0.5,
            showarrow=False,
            font=dict(size=16, color="gray"),
        )
        fig.update_layout(
            template=self.template,
            xaxis=dict(visible=False),
            yaxis=dict(visible=False),
        )
        return fig

    def save_html(
        self,
        fig: go.Figure,
        filepath: Union[str, Path],
        include_plotlyjs: Union[bool, str] = "cdn",
    ):
        """
        Save figure to an HTML file.

        Args:
            fig: Plotly Figure object
            filepath: Output file path
            include_plotlyjs: Whether to include plotly.js in the file
                ("cdn" links it instead)
        """
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(
            str(path),
            include_plotlyjs=include_plotlyjs,
            full_html=True,
        )
        logger.info("Saved: %s", path)
