"""
Command-line interface for the RNA-seq DGE + GSEA pipeline.

Usage:
    rnaseq-dge inspect counts.tsv metadata.tsv
    rnaseq-dge run counts.tsv metadata.tsv \\
        --reference control --test treated \\
        --gene-sets hallmark=h.all.v2023.2.Hs.symbols.gmt \\
        --gene-sets reactome=c2.cp.reactome.v2023.2.Hs.symbols.gmt \\
        --batch-column batch --remove-batch-effect
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import click

from rnaseq_dge.config import PipelineConfig, load_env_defaults
from rnaseq_dge.data_loader import load_counts, load_metadata, validate_sample_alignment
from rnaseq_dge.exceptions import PipelineError
from rnaseq_dge.gene_ranker import RankingMetric
from rnaseq_dge.pipeline import run_pipeline
from rnaseq_dge.report_generator import ReportGenerator

logger = logging.getLogger(__name__)


def parse_gene_sets(values: Iterable[str]) -> Dict[str, str]:
    """Parse repeated NAME=PATH options into a dict."""
    collections = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise click.BadParameter(
                f"expected NAME=PATH, got {value!r}", param_hint="--gene-sets"
            )
        if not Path(path.strip()).is_file():
            raise click.BadParameter(f"gene set file not found: {path}", param_hint="--gene-sets")
        collections[name.strip()] = path.strip()
    return collections


def build_config(
    config_path: Optional[Path],
    gene_sets: Tuple[str, ...] = (),
    group_column: Optional[str] = None,
    reference: Optional[str] = None,
    test_level: Optional[str] = None,
    batch_column: Optional[str] = None,
    batch_in_design: bool = False,
    remove_batch: bool = False,
    biotypes: Tuple[str, ...] = (),
    remove_sex_chromosomes: bool = False,
    keep_unannotated: bool = False,
    metric: Optional[str] = None,
    permutations: Optional[int] = None,
    seed: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> PipelineConfig:
    """Load the config file (if any) and apply command-line overrides."""
    data = PipelineConfig.from_json(config_path).to_dict() if config_path else {}

    def section(name: str) -> dict:
        return data.setdefault(name, {})

    if group_column:
        section("de")["group_column"] = group_column
    if reference:
        section("de")["reference"] = reference
    if test_level:
        section("de")["test_level"] = test_level
    if batch_column:
        section("de")["batch_column"] = batch_column
    if batch_in_design:
        section("de")["batch_in_design"] = True
    if remove_batch:
        section("normalization")["remove_batch_effect"] = True
    if biotypes:
        section("gene_filter")["biotypes"] = list(biotypes)
    if remove_sex_chromosomes:
        section("gene_filter")["remove_sex_chromosomes"] = True
    if keep_unannotated:
        section("annotation")["keep_unannotated"] = True
    if metric:
        section("ranking")["metric"] = metric
    if permutations is not None:
        section("enrichment")["permutation_num"] = permutations
    if seed is not None:
        section("enrichment")["seed"] = seed
    if gene_sets:
        data["gene_sets"] = {**data.get("gene_sets", {}), **parse_gene_sets(gene_sets)}

    env = load_env_defaults()
    if output_dir is not None:
        section("report")["output_dir"] = str(output_dir)
    elif "output_dir" in env and not config_path:
        section("report")["output_dir"] = env["output_dir"]

    try:
        return PipelineConfig.from_dict(data)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Differential expression and pre-ranked enrichment for bulk RNA-seq."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("run")
@click.argument("counts", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("metadata", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file; command-line options override it.",
)
@click.option(
    "--gene-sets",
    multiple=True,
    metavar="NAME=PATH",
    help="Pathway collection as a GMT file (repeat for multiple).",
)
@click.option("--group-column", help="Metadata column with the experimental group.")
@click.option("--reference", help="Baseline group level.")
@click.option("--test", "test_level", help="Group level compared against the baseline.")
@click.option("--batch-column", help="Metadata column with the batch label.")
@click.option(
    "--batch-in-design",
    is_flag=True,
    help="Add the batch as a term of the DE design (~batch + group).",
)
@click.option(
    "--remove-batch-effect",
    "remove_batch",
    is_flag=True,
    help="Plot a batch-corrected VST matrix (figures only).",
)
@click.option(
    "--biotype",
    "biotypes",
    multiple=True,
    help="Keep only genes of this biotype (repeat for multiple).",
)
@click.option(
    "--remove-sex-chromosomes",
    is_flag=True,
    help="Drop genes on chromosomes X and Y.",
)
@click.option(
    "--keep-unannotated",
    is_flag=True,
    help="Keep genes without a symbol, ranked under their gene ID.",
)
@click.option(
    "--metric",
    type=click.Choice([m.value for m in RankingMetric]),
    help="Statistic used to rank genes for enrichment.",
)
@click.option("--permutations", type=click.IntRange(1, 100_000), help="GSEA permutations.")
@click.option("--seed", type=int, help="Random seed for GSEA permutations.")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for tables, figures and summary.json (default: results).",
)
@click.option("--no-figures", is_flag=True, help="Write tables and summary only.")
def run_command(
    counts: Path,
    metadata: Path,
    config_path: Optional[Path],
    gene_sets: Tuple[str, ...],
    group_column: Optional[str],
    reference: Optional[str],
    test_level: Optional[str],
    batch_column: Optional[str],
    batch_in_design: bool,
    remove_batch: bool,
    biotypes: Tuple[str, ...],
    remove_sex_chromosomes: bool,
    keep_unannotated: bool,
    metric: Optional[str],
    permutations: Optional[int],
    seed: Optional[int],
    output_dir: Optional[Path],
    no_figures: bool,
) -> None:
    """Run the full analysis on a counts file and a metadata file."""
    config = build_config(
        config_path,
        gene_sets=gene_sets,
        group_column=group_column,
        reference=reference,
        test_level=test_level,
        batch_column=batch_column,
        batch_in_design=batch_in_design,
        remove_batch=remove_batch,
        biotypes=biotypes,
        remove_sex_chromosomes=remove_sex_chromosomes,
        keep_unannotated=keep_unannotated,
        metric=metric,
        permutations=permutations,
        seed=seed,
        output_dir=output_dir,
    )
    if no_figures:
        config.report.write_figures = False

    try:
        result = run_pipeline(config, counts, metadata)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    generator = ReportGenerator(config.report)
    written = generator.write_report(result)

    click.echo(generator.to_console_summary(result.de_result, result.enrichment))
    click.echo(
        f"\nWrote {len(written['tables'])} tables and {len(written['figures'])} figures "
        f"to {config.report.output_dir}"
    )


@cli.command("inspect")
@click.argument("counts", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("metadata", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file (input layout and group column).",
)
@click.option("--group-column", help="Metadata column with the experimental group.")
def inspect_command(
    counts: Path,
    metadata: Path,
    config_path: Optional[Path],
    group_column: Optional[str],
) -> None:
    """Show dimensions, groups and validation status of the inputs."""
    config = build_config(config_path, group_column=group_column)
    try:
        table = load_counts(counts, config.input)
        meta = load_metadata(metadata, config.input)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Counts: {table.n_genes:,} genes x {table.n_samples} samples")
    if len(table.annotation.columns):
        click.echo(f"Annotation columns: {', '.join(map(str, table.annotation.columns))}")
    click.echo(f"Metadata: {len(meta)} samples, columns: {', '.join(map(str, meta.columns))}")

    column = config.de.group_column
    if column in meta.columns:
        for level, n in meta[column].value_counts().sort_index().items():
            click.echo(f"  {column}={level}: {n} samples")
    else:
        click.echo(f"Warning: group column {column!r} not found in metadata", err=True)

    try:
        validate_sample_alignment(table, meta, reorder=config.input.reorder_samples)
    except PipelineError as exc:
        click.echo(f"Validation: FAILED ({exc})")
        raise SystemExit(1)
    click.echo("Validation: OK")


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
