"""
Tests for the command-line interface.

``run`` is tested with the pipeline and report writer replaced, so these
tests need neither pydeseq2 nor gseapy.
"""

import types

import click
import pytest
from click.testing import CliRunner

from rnaseq_dge import cli as cli_module
from rnaseq_dge.cli import build_config, cli, parse_gene_sets
from rnaseq_dge.config import ENV_OUTPUT_DIR
from rnaseq_dge.exceptions import InputValidationError

COUNTS_TSV = (
    "gene_id\tsymbol\tS1\tS2\tS3\tS4\n"
    "ENSG1\tTP53\t10\t12\t30\t35\n"
    "ENSG2\tMYC\t100\t90\t20\t25\n"
    "ENSG3\tEGFR\t5\t7\t6\t4\n"
)

METADATA_TSV = (
    "sample\tgroup\tbatch\n"
    "S1\tcontrol\tb1\n"
    "S2\tcontrol\tb2\n"
    "S3\ttreated\tb1\n"
    "S4\ttreated\tb2\n"
)


@pytest.fixture
def inputs(tmp_path):
    counts = tmp_path / "counts.tsv"
    metadata = tmp_path / "metadata.tsv"
    counts.write_text(COUNTS_TSV)
    metadata.write_text(METADATA_TSV)
    return counts, metadata


class _FakeReportGenerator:
    def __init__(self, config=None):
        self.config = config

    def write_report(self, result, output_dir=None):
        return {"tables": ["a.tsv", "b.tsv"], "figures": [], "summary": ["summary.json"]}

    def to_console_summary(self, de_result, enrichment=None):
        return "SUMMARY"


class TestParseGeneSets:
    """Tests for NAME=PATH parsing."""

    def test_parses_pairs(self, tmp_path):
        gmt = tmp_path / "h.gmt"
        gmt.write_text("SET\tdesc\tA\tB\n")

        assert parse_gene_sets([f"hallmark={gmt}"]) == {"hallmark": str(gmt)}

    def test_missing_separator(self):
        with pytest.raises(click.BadParameter):
            parse_gene_sets(["hallmark.gmt"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(click.BadParameter, match="not found"):
            parse_gene_sets([f"hallmark={tmp_path / 'nope.gmt'}"])


class TestBuildConfig:
    """Tests for merging the config file, options and environment."""

    def test_options_override_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv(ENV_OUTPUT_DIR, raising=False)
        path = tmp_path / "config.json"
        path.write_text('{"de": {"reference": "ctrl", "group_column": "condition"}}')

        config = build_config(path, reference="control", seed=9, biotypes=("protein_coding",))

        assert config.de.reference == "control"
        assert config.de.group_column == "condition"
        assert config.enrichment.seed == 9
        assert config.gene_filter.biotypes == frozenset({"protein_coding"})

    def test_env_output_dir(self, monkeypatch):
        monkeypatch.setenv(ENV_OUTPUT_DIR, "/tmp/from-env")
        assert build_config(None).report.output_dir == "/tmp/from-env"

    def test_option_output_dir_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENV_OUTPUT_DIR, "/tmp/from-env")
        config = build_config(None, output_dir=tmp_path / "out")
        assert config.report.output_dir == str(tmp_path / "out")

    def test_invalid_combination(self):
        with pytest.raises(click.UsageError, match="batch_column"):
            build_config(None, remove_batch=True)


class TestInspect:
    """Tests for the inspect command."""

    def test_valid_inputs(self, inputs):
        counts, metadata = inputs

        result = CliRunner().invoke(cli, ["inspect", str(counts), str(metadata)])

        assert result.exit_code == 0, result.output
        assert "Counts: 3 genes x 4 samples" in result.output
        assert "Annotation columns: symbol" in result.output
        assert "group=control: 2 samples" in result.output
        assert "Validation: OK" in result.output

    def test_missing_sample(self, inputs):
        counts, metadata = inputs
        metadata.write_text("\n".join(METADATA_TSV.splitlines()[:-1]) + "\n")

        result = CliRunner().invoke(cli, ["inspect", str(counts), str(metadata)])

        assert result.exit_code == 1
        assert "Validation: FAILED" in result.output

    def test_missing_group_column_warns(self, inputs):
        counts, metadata = inputs

        result = CliRunner().invoke(
            cli, ["inspect", str(counts), str(metadata), "--group-column", "condition"]
        )

        assert "'condition' not found" in result.output


class TestRun:
    """Tests for the run command with the pipeline replaced."""

    def test_options_reach_pipeline(self, inputs, tmp_path, monkeypatch):
        counts, metadata = inputs
        gmt = tmp_path / "h.gmt"
        gmt.write_text("SET\tdesc\tTP53\tMYC\n")
        seen = {}

        def fake_run_pipeline(config, counts_path, metadata_path):
            seen["config"] = config
            seen["paths"] = (counts_path, metadata_path)
            return types.SimpleNamespace(de_result=None, enrichment=None)

        monkeypatch.setattr(cli_module, "run_pipeline", fake_run_pipeline)
        monkeypatch.setattr(cli_module, "ReportGenerator", _FakeReportGenerator)

        result = CliRunner().invoke(cli, [
            "run", str(counts), str(metadata),
            "--reference", "control",
            "--test", "treated",
            "--batch-column", "batch",
            "--remove-batch-effect",
            "--gene-sets", f"hallmark={gmt}",
            "--metric", "log2fc",
            "--no-figures",
            "--output-dir", str(tmp_path / "out"),
        ])

        assert result.exit_code == 0, result.output
        config = seen["config"]
        assert config.de.reference == "control"
        assert config.de.test_level == "treated"
        assert config.normalization.remove_batch_effect
        assert config.gene_sets == {"hallmark": str(gmt)}
        assert config.ranking.metric.value == "log2fc"
        assert config.report.write_figures is False
        assert seen["paths"] == (counts, metadata)
        assert "SUMMARY" in result.output
        assert "Wrote 2 tables and 0 figures" in result.output

    def test_pipeline_error_reported(self, inputs, monkeypatch):
        counts, metadata = inputs

        def failing_run_pipeline(config, counts_path, metadata_path):
            raise InputValidationError("Level 'ctrl' not present in column 'group'")

        monkeypatch.setattr(cli_module, "run_pipeline", failing_run_pipeline)

        result = CliRunner().invoke(cli, ["run", str(counts), str(metadata)])

        assert result.exit_code == 1
        assert "Level 'ctrl' not present" in result.output

    def test_bad_gene_sets(self, inputs):
        counts, metadata = inputs

        result = CliRunner().invoke(
            cli, ["run", str(counts), str(metadata), "--gene-sets", "hallmark"]
        )

        assert result.exit_code == 2
        assert "NAME=PATH" in result.output
