"""
Pre-ranked gene set enrichment analysis (GSEA) using gseapy.

Each pathway collection (e.g. MSigDB Hallmark, REACTOME) is tested
against the same ranked gene list in its own run, and its p-values are
Benjamini-Hochberg corrected within that collection only.

Example:
    from rnaseq_dge.enrichment_analyzer import (
        EnrichmentAnalyzer, EnrichmentConfig, load_collections,
    )

    collections = load_collections({
        "hallmark": "h.all.v2023.2.Hs.symbols.gmt",
        "reactome": "c2.cp.reactome.v2023.2.Hs.symbols.gmt",
    })
    analyzer = EnrichmentAnalyzer(EnrichmentConfig(permutation_num=1000))
    result = analyzer.analyze(ranked, collections)
    print(result["hallmark"].significant(0.05))
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Union

import numpy as np
import pandas as pd

from .de_result import (
    ENRICHMENT_COLUMNS,
    CollectionEnrichment,
    EnrichmentProvenance,
    EnrichmentResult,
    RankedList,
)
from .exceptions import EmptyInputError

logger = logging.getLogger(__name__)

GeneSets = Dict[str, List[str]]


@dataclass
class EnrichmentConfig:
    """
    Configuration for pre-ranked enrichment analysis.

    Attributes:
        permutation_num: Number of gene-label permutations
        min_size: Smallest gene set (after intersecting with the ranking) tested
        max_size: Largest gene set tested
        weight: Weight of the ranking statistic in the running sum (GSEA p)
        seed: Random seed for permutations
        threads: Worker threads for gseapy. Kept at 1: the pipeline runs
            single-threaded.
        correction_method: statsmodels multipletests method for padj
    """

    permutation_num: int = 1000
    min_size: int = 15
    max_size: int = 500
    weight: float = 1.0
    seed: int = 42
    threads: int = 1
    correction_method: str = "fdr_bh"

    def __post_init__(self):
        if self.min_size < 1 or self.max_size < self.min_size:
            raise ValueError("Need 1 <= min_size <= max_size")
        if self.permutation_num < 1:
            raise ValueError("permutation_num must be positive")


class EnrichmentBackend(Protocol):
    """Protocol for pre-ranked enrichment backends."""

    name: str

    def run(
        self,
        ranks: pd.Series,
        gene_sets: GeneSets,
        config: EnrichmentConfig,
    ) -> pd.DataFrame:
        """
        Run enrichment of ``gene_sets`` against ``ranks``.

        Args:
            ranks: Gene symbol -> statistic
            gene_sets: Pathway name -> member genes (already size-filtered)
            config: Analysis configuration

        Returns:
            DataFrame with columns pathway, es, nes, pvalue, fdr_qval and
            leading_edge (list of genes)
        """
        ...


class GseapyPrerankBackend:
    """
    Enrichment via ``gseapy.prerank`` (GSEA running-sum statistic with
    gene-label permutation).
    """

    name = "gseapy.prerank"

    def run(
        self,
        ranks: pd.Series,
        gene_sets: GeneSets,
        config: EnrichmentConfig,
    ) -> pd.DataFrame:
        try:
            import gseapy
        except ImportError as e:
            raise ImportError(
                "gseapy package required. Install with: pip install gseapy"
            ) from e

        pre_res = gseapy.prerank(
            rnk=ranks,
            gene_sets=gene_sets,
            outdir=None,
            min_size=config.min_size,
            max_size=config.max_size,
            permutation_num=config.permutation_num,
            weight=config.weight,
            threads=config.threads,
            seed=config.seed,
            no_plot=True,
            verbose=False,
        )
        res = pre_res.res2d
        lead = res["Lead_genes"].fillna("").astype(str)
        return pd.DataFrame({
            "pathway": res["Term"].astype(str).to_numpy(),
            "es": pd.to_numeric(res["ES"], errors="coerce").to_numpy(),
            "nes": pd.to_numeric(res["NES"], errors="coerce").to_numpy(),
            "pvalue": pd.to_numeric(res["NOM p-val"], errors="coerce").to_numpy(),
            "fdr_qval": pd.to_numeric(res["FDR q-val"], errors="coerce").to_numpy(),
            "leading_edge": [[g for g in s.split(";") if g] for s in lead],
        })


def load_gene_sets(path: Union[str, Path]) -> GeneSets:
    """
    Read a GMT file (name <TAB> description <TAB> genes...).

    Args:
        path: GMT file path

    Returns:
        Pathway name -> member gene symbols
    """
    from gseapy.parser import read_gmt

    gene_sets = read_gmt(str(path))
    if not gene_sets:
        raise EmptyInputError(f"No gene sets found in {path}")
    logger.info("Loaded %d gene sets from %s", len(gene_sets), path)
    return {name: list(genes) for name, genes in gene_sets.items()}


def load_collections(paths: Mapping[str, Union[str, Path]]) -> Dict[str, GeneSets]:
    """Load several named GMT collections, e.g. {"hallmark": path, "reactome": path}."""
    return {name: load_gene_sets(path) for name, path in paths.items()}


def adjust_pvalues(pvalues: pd.Series, method: str = "fdr_bh") -> pd.Series:
    """Multiple-testing correction ignoring undefined p-values."""
    from statsmodels.stats.multitest import multipletests

    adjusted = pd.Series(np.nan, index=pvalues.index, dtype=float)
    defined = pvalues.notna()
    if defined.any():
        _, corrected, _, _ = multipletests(pvalues[defined].to_numpy(dtype=float), method=method)
        adjusted[defined] = corrected
    return adjusted


def direction_labels(nes: pd.Series) -> pd.Series:
    """"up" where NES > 0, "down" otherwise."""
    return pd.Series(np.where(nes > 0, "up", "down"), index=nes.index)


def filter_gene_sets(
    gene_sets: GeneSets,
    genes: List[str],
    min_size: int,
    max_size: int,
) -> Dict[str, int]:
    """Overlap size of every gene set within [min_size, max_size] of the ranking."""
    universe = set(genes)
    sizes = {}
    for name, members in gene_sets.items():
        overlap = len(universe.intersection(members))
        if min_size <= overlap <= max_size:
            sizes[name] = overlap
    return sizes


class EnrichmentAnalyzer:
    """
    Pre-ranked gene set enrichment analyzer.

    Runs every pathway collection independently against one ranked list
    using a configurable backend (default: gseapy prerank).

    Example:
        analyzer = EnrichmentAnalyzer(EnrichmentConfig(min_size=15))
        result = analyzer.analyze(ranked, {"hallmark": hallmark_sets})
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        backend: Optional[EnrichmentBackend] = None,
    ):
        """
        Initialize enrichment analyzer.

        Args:
            config: Analysis configuration
            backend: Enrichment backend (default: GseapyPrerankBackend)
        """
        self.config = config or EnrichmentConfig()
        self.backend = backend or GseapyPrerankBackend()

    def analyze(
        self,
        ranked: RankedList,
        collections: Mapping[str, GeneSets],
    ) -> EnrichmentResult:
        """
        Run enrichment for every collection.

        Args:
            ranked: Ranked gene list
            collections: Collection name -> gene sets

        Returns:
            EnrichmentResult with one independently corrected table per collection
        """
        if len(ranked) == 0:
            raise EmptyInputError("Ranked gene list is empty; cannot run enrichment")
        if not collections:
            raise EmptyInputError("No gene set collections given")

        results = {
            name: self.analyze_collection(ranked, name, gene_sets)
            for name, gene_sets in collections.items()
        }

        provenance = EnrichmentProvenance(
            backend=self.backend.name,
            metric=ranked.metric,
            n_ranked_genes=len(ranked),
            permutation_num=self.config.permutation_num,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            seed=self.config.seed,
            correction_method=self.config.correction_method,
        )
        return EnrichmentResult(provenance=provenance, collections=results)

    def analyze_collection(
        self,
        ranked: RankedList,
        name: str,
        gene_sets: GeneSets,
    ) -> CollectionEnrichment:
        """
        Run enrichment for a single collection.

        Args:
            ranked: Ranked gene list
            name: Collection name (used for labelling and logging)
            gene_sets: Pathway name -> member genes

        Returns:
            CollectionEnrichment
        """
        cfg = self.config
        sizes = filter_gene_sets(gene_sets, ranked.genes, cfg.min_size, cfg.max_size)
        logger.info(
            "Collection %r: %d of %d gene sets within size %d-%d",
            name, len(sizes), len(gene_sets), cfg.min_size, cfg.max_size,
        )
        if not sizes:
            logger.warning("Collection %r: no gene set passed the size filter; skipped", name)
            empty = pd.DataFrame(columns=ENRICHMENT_COLUMNS)
            return CollectionEnrichment(collection=name, table=empty, n_gene_sets=len(gene_sets))

        tested = {k: gene_sets[k] for k in sizes}
        raw = self.backend.run(ranked.ranks, tested, cfg)

        table = raw.copy()
        table["size"] = table["pathway"].map(sizes).astype("Int64")
        table["padj"] = adjust_pvalues(table["pvalue"], cfg.correction_method)
        table["direction"] = direction_labels(table["nes"])
        table = (
            table.reindex(columns=ENRICHMENT_COLUMNS)
            .sort_values(["padj", "pvalue"], kind="mergesort")
            .reset_index(drop=True)
        )

        n_sig = int((table["padj"] < 0.05).sum())
        logger.info("Collection %r: %d pathways tested, %d with padj < 0.05", name, len(table), n_sig)
        return CollectionEnrichment(collection=name, table=table, n_gene_sets=len(gene_sets))
