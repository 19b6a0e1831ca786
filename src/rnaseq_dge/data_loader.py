"""
Loading of raw count tables and sample metadata.

The counts file holds one row per gene: leading annotation columns
(gene ID, chromosome, biotype, symbol, ...) followed by one integer
column per sample. The metadata file holds one row per sample with at
least a group label and optionally a batch label.

Example:
    from rnaseq_dge.data_loader import InputConfig, load_dataset

    table, metadata = load_dataset("counts.tsv", "samples.tsv", InputConfig())
    print(table.n_genes, table.n_samples)
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InputValidationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class InputConfig:
    """
    Layout of the input files.

    Attributes:
        gene_id_column: Column holding unique gene IDs. Falls back to the
            first column when absent.
        annotation_columns: Gene annotation columns. None means every
            non-numeric column; the remaining columns are samples, so numeric
            annotation such as a featureCounts "Length" column must be listed.
        symbol_column: Annotation column with human-readable gene symbols.
        biotype_column: Annotation column with the gene biotype.
        chromosome_column: Annotation column with the chromosome name.
        sample_column: Metadata column holding sample IDs (default: first).
        reorder_samples: If True, count columns listed in a different order
            than the metadata rows are reordered instead of rejected.
        sep: Field delimiter. None picks "," for .csv files and tab otherwise.
    """

    gene_id_column: str = "gene_id"
    annotation_columns: Optional[List[str]] = None
    symbol_column: str = "symbol"
    biotype_column: str = "biotype"
    chromosome_column: str = "chromosome"
    sample_column: Optional[str] = None
    reorder_samples: bool = False
    sep: Optional[str] = None


@dataclass(frozen=True)
class CountTable:
    """
    Raw gene x sample count matrix plus its gene annotation.

    Both frames share the same gene index. Instances are never modified;
    filtering returns a new table via ``subset``.
    """

    counts: pd.DataFrame
    annotation: pd.DataFrame = field(default_factory=pd.DataFrame)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        config: Optional[InputConfig] = None,
    ) -> "CountTable":
        """
        Split a combined annotation + counts frame into a CountTable.

        Args:
            frame: Table as read from the counts file (gene ID as a column
                or already as the index)
            config: Input layout (uses defaults if None)

        Returns:
            Validated CountTable
        """
        config = config or InputConfig()
        frame = frame.copy()

        if config.gene_id_column in frame.columns:
            frame = frame.set_index(config.gene_id_column)
        elif isinstance(frame.index, pd.RangeIndex):
            frame = frame.set_index(frame.columns[0])
        frame.index = frame.index.astype(str)
        frame.index.name = config.gene_id_column

        if config.annotation_columns is not None:
            missing = [c for c in config.annotation_columns if c not in frame.columns]
            if missing:
                raise InputValidationError(
                    f"Annotation columns not found in counts table: {missing}",
                    details={"missing_columns": missing},
                )
            annotation_cols = list(config.annotation_columns)
        else:
            annotation_cols = list(frame.select_dtypes(exclude="number").columns)

        sample_cols = [c for c in frame.columns if c not in annotation_cols]
        if not sample_cols:
            raise InputValidationError("Counts table has no sample columns")

        counts = frame[sample_cols].copy()
        counts.columns = counts.columns.astype(str)
        annotation = frame[annotation_cols].copy()

        table = cls(counts=_as_integer_counts(counts), annotation=annotation)
        table.validate()
        return table

    @property
    def sample_ids(self) -> List[str]:
        return list(self.counts.columns)

    @property
    def gene_ids(self) -> List[str]:
        return list(self.counts.index)

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    def validate(self) -> None:
        """Check the count table invariants; raise InputValidationError on failure."""
        if not self.counts.index.is_unique:
            dupes = self.counts.index[self.counts.index.duplicated()].unique().tolist()
            raise InputValidationError(
                f"Gene IDs are not unique ({len(dupes)} duplicated, e.g. {dupes[:5]})",
                details={"duplicated_gene_ids": dupes},
            )
        if (self.counts.values < 0).any():
            raise InputValidationError("Counts must be non-negative")
        if len(self.annotation.columns) and not self.annotation.index.equals(self.counts.index):
            raise InputValidationError("Annotation and counts have different gene indexes")

    def subset(self, keep: pd.Series) -> "CountTable":
        """Return a new table restricted to genes where ``keep`` is True."""
        keep = keep.reindex(self.counts.index, fill_value=False).astype(bool)
        counts = self.counts.loc[keep]
        return replace(self, counts=counts, annotation=self.annotation.reindex(counts.index))

    def annotation_column(self, column: str) -> Optional[pd.Series]:
        """Annotation column aligned to the gene index, or None if absent."""
        if column in self.annotation.columns:
            return self.annotation[column]
        return None


def _as_integer_counts(counts: pd.DataFrame) -> pd.DataFrame:
    """Coerce a numeric count frame to int64, rejecting NA and fractional values."""
    numeric = counts.apply(pd.to_numeric, errors="coerce")
    if numeric.isna().values.any():
        bad = numeric.columns[numeric.isna().any()].tolist()
        raise InputValidationError(
            f"Counts contain missing or non-numeric values in samples {bad}",
            details={"samples": bad},
        )
    values = numeric.to_numpy(dtype=float)
    if not np.allclose(values, np.round(values)):
        raise InputValidationError("Counts must be integers (found fractional values)")
    return pd.DataFrame(
        np.round(values).astype(np.int64),
        index=numeric.index,
        columns=numeric.columns,
    )


def read_table(path: PathLike, sep: Optional[str] = None, **kwargs) -> pd.DataFrame:
    """Read a delimited file, inferring the delimiter from the extension."""
    path = Path(path)
    if sep is None:
        sep = "," if ".csv" in [s.lower() for s in path.suffixes] else "\t"
    return pd.read_csv(path, sep=sep, **kwargs)


def load_counts(path: PathLike, config: Optional[InputConfig] = None) -> CountTable:
    """
    Load a raw count table.

    Args:
        path: Delimited counts file
        config: Input layout (uses defaults if None)

    Returns:
        CountTable with integer counts and gene annotation
    """
    config = config or InputConfig()
    frame = read_table(path, sep=config.sep)
    table = CountTable.from_frame(frame, config)
    logger.info(
        "Loaded counts from %s: %d genes x %d samples (%d annotation columns)",
        path, table.n_genes, table.n_samples, table.annotation.shape[1],
    )
    return table


def load_metadata(path: PathLike, config: Optional[InputConfig] = None) -> pd.DataFrame:
    """
    Load the sample metadata table, indexed by sample ID.

    Args:
        path: Delimited metadata file
        config: Input layout (uses defaults if None)

    Returns:
        DataFrame with one row per sample
    """
    config = config or InputConfig()
    frame = read_table(path, sep=config.sep, dtype=str)
    index_col = config.sample_column or frame.columns[0]
    if index_col not in frame.columns:
        raise InputValidationError(f"Sample column {index_col!r} not found in metadata")
    metadata = frame.set_index(index_col)
    metadata.index = metadata.index.astype(str)
    if not metadata.index.is_unique:
        raise InputValidationError("Sample IDs in metadata are not unique")
    logger.info("Loaded metadata from %s: %d samples", path, len(metadata))
    return metadata


def validate_sample_alignment(
    table: CountTable,
    metadata: pd.DataFrame,
    reorder: bool = False,
) -> CountTable:
    """
    Ensure count columns and metadata rows describe the same samples in order.

    Args:
        table: Raw count table
        metadata: Sample metadata indexed by sample ID
        reorder: Reorder count columns to the metadata order when only the
            order differs

    Returns:
        The table, reordered if requested

    Raises:
        InputValidationError: If the sample sets differ, or the order differs
            and ``reorder`` is False
    """
    count_ids = table.sample_ids
    meta_ids = [str(s) for s in metadata.index]

    if count_ids == meta_ids:
        return table

    missing_in_metadata = [s for s in count_ids if s not in set(meta_ids)]
    missing_in_counts = [s for s in meta_ids if s not in set(count_ids)]
    if missing_in_metadata or missing_in_counts:
        hint = ""
        if missing_in_metadata:
            hint = (
                "; numeric annotation columns are read as samples unless listed "
                "in annotation_columns"
            )
        raise InputValidationError(
            "Sample IDs differ between counts and metadata: "
            f"{len(missing_in_metadata)} only in counts {missing_in_metadata[:5]}, "
            f"{len(missing_in_counts)} only in metadata {missing_in_counts[:5]}{hint}",
            details={
                "missing_in_metadata": missing_in_metadata,
                "missing_in_counts": missing_in_counts,
            },
        )

    if not reorder:
        raise InputValidationError(
            "Count columns are not in metadata order; pass reorder_samples=True "
            "to reorder them",
            details={"counts_order": count_ids, "metadata_order": meta_ids},
        )

    logger.info("Reordering count columns to metadata order")
    return replace(table, counts=table.counts[meta_ids])


def load_dataset(
    counts_path: PathLike,
    metadata_path: PathLike,
    config: Optional[InputConfig] = None,
) -> Tuple[CountTable, pd.DataFrame]:
    """Load counts and metadata and validate that their samples line up."""
    config = config or InputConfig()
    table = load_counts(counts_path, config)
    metadata = load_metadata(metadata_path, config)
    table = validate_sample_alignment(table, metadata, reorder=config.reorder_samples)
    return table, metadata
