"""
Exceptions raised by the rnaseq_dge pipeline.

Statistical library failures are not wrapped; these cover the input
preconditions the pipeline checks itself before handing data on.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        return self.message


class InputValidationError(PipelineError, ValueError):
    """
    Raised when input tables violate a precondition.

    Examples: count columns and metadata rows disagree, duplicate gene
    IDs, negative counts, all-zero genes reaching the normalizer, or a
    contrast naming a group level that does not exist.

    ``details`` carries the offending identifiers where useful, e.g.
    ``{"missing_in_metadata": [...], "missing_in_counts": [...]}``.
    """


class EmptyInputError(PipelineError, ValueError):
    """Raised when a stage receives an empty artifact it cannot work on."""
