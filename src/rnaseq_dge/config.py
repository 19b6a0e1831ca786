"""
Pipeline configuration.

Each stage owns its configuration dataclass; ``PipelineConfig`` collects
them so a whole run can be described by one JSON file:

    {
        "de": {"group_column": "condition", "reference": "control"},
        "gene_filter": {"biotypes": ["protein_coding"]},
        "gene_sets": {"hallmark": "h.all.v2023.2.Hs.symbols.gmt"}
    }

Usage:
    from rnaseq_dge.config import PipelineConfig

    config = PipelineConfig.from_json("config.json")
    config.de.reference = "control"
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from .annotator import AnnotationConfig
from .data_loader import InputConfig
from .de_analysis import DEConfig
from .enrichment_analyzer import EnrichmentConfig
from .expression_filter import ExpressionFilterConfig, GeneFilterConfig
from .gene_ranker import RankingConfig
from .normalizer import NormalizationConfig
from .report_generator import ReportConfig

ENV_OUTPUT_DIR = "RNASEQ_DGE_OUTPUT_DIR"

_SECTIONS = {
    "input": InputConfig,
    "expression": ExpressionFilterConfig,
    "gene_filter": GeneFilterConfig,
    "normalization": NormalizationConfig,
    "de": DEConfig,
    "annotation": AnnotationConfig,
    "ranking": RankingConfig,
    "enrichment": EnrichmentConfig,
    "report": ReportConfig,
}

_FROZENSET_FIELDS = {("gene_filter", "biotypes"), ("gene_filter", "sex_chromosomes")}


def load_env_defaults(env_file: Optional[Union[str, Path]] = None) -> Dict[str, str]:
    """
    Load .env and return configuration values found in the environment.

    Returns:
        Dict with the keys that are set:
        - output_dir: from RNASEQ_DGE_OUTPUT_DIR
    """
    load_dotenv(env_file)
    defaults = {}
    if os.environ.get(ENV_OUTPUT_DIR):
        defaults["output_dir"] = os.environ[ENV_OUTPUT_DIR]
    return defaults


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


@dataclass
class PipelineConfig:
    """
    Configuration for a full analysis run.

    Attributes:
        gene_sets: Collection name -> GMT path. Empty disables enrichment.
    """

    input: InputConfig = field(default_factory=InputConfig)
    expression: ExpressionFilterConfig = field(default_factory=ExpressionFilterConfig)
    gene_filter: GeneFilterConfig = field(default_factory=GeneFilterConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    de: DEConfig = field(default_factory=DEConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    gene_sets: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check settings that span more than one stage."""
        if self.normalization.remove_batch_effect and not self.de.batch_column:
            raise ValueError("remove_batch_effect requires de.batch_column")
        if self.de.batch_in_design and not self.de.batch_column:
            raise ValueError("batch_in_design requires de.batch_column")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build from a nested dictionary; unknown keys raise ValueError."""
        unknown = set(data) - set(_SECTIONS) - {"gene_sets"}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        kwargs = {}
        for name, section_cls in _SECTIONS.items():
            values = dict(data.get(name) or {})
            allowed = {f.name for f in fields(section_cls)}
            bad = set(values) - allowed
            if bad:
                raise ValueError(f"Unknown keys in {name!r}: {sorted(bad)}")
            for key in list(values):
                if (name, key) in _FROZENSET_FIELDS and values[key] is not None:
                    values[key] = frozenset(values[key])
            kwargs[name] = section_cls(**values)

        kwargs["gene_sets"] = {str(k): str(v) for k, v in (data.get("gene_sets") or {}).items()}
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PipelineConfig":
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return _to_jsonable(asdict(self))

    def to_json(self, path: Union[str, Path], indent: int = 2) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=indent)
