"""
Tests for the package's public exports.
"""

import rnaseq_dge


class TestExports:
    """Every exported name resolves to a module attribute."""

    def test_all_names_resolve(self):
        missing = [name for name in rnaseq_dge.__all__ if not hasattr(rnaseq_dge, name)]
        assert missing == []

    def test_result_types_exported(self):
        for name in ("DEResult", "AnnotationResult", "RankedList", "EnrichmentResult"):
            assert name in rnaseq_dge.__all__

    def test_no_per_gene_record(self):
        assert not hasattr(rnaseq_dge, "GeneResult")
        assert not hasattr(rnaseq_dge.DEResult, "get_gene")
