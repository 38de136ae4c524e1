import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigError

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
RAW_POLICY_DATA = DATA_DIR / "raw" / "freMTPL2freq.csv"
RAW_CLAIM_DATA = DATA_DIR / "raw" / "freMTPL2sev.csv"
PROCESSED_DIR = DATA_DIR / "processed"
CONFIG_PATH = PROJECT_ROOT / "configs" / "pipeline.yaml"

# Reproducibility
RANDOM_STATE = 2021
TRAIN_PROP = 0.8
CV_FOLDS = 10
CV_REPEATS = 5
STRATA_BINS = 4

ID_COL = "IDpol"
EXPOSURE_COL = "Exposure"
CLAIM_COUNT_COL = "ClaimNb"
CLAIM_AMOUNT_COL = "ClaimAmount"
TARGET_COL = "ClaimAmountExposure"
EXPOSURE_BAND_COL = "ExposureBand"

# freMTPL2freq risk features
CAT_FEATURES = ["Region", "VehBrand", "VehGas"]
ORDINAL_FEATURES = ["Area", "VehPower"]
NUM_FEATURES = ["BonusMalus", "Density", "DrivAge", "VehAge"]
DROPPED_FEATURES = ["Area", "VehGas"]

POLICY_COLUMNS = [ID_COL, CLAIM_COUNT_COL, EXPOSURE_COL] + ORDINAL_FEATURES + [
    "VehAge",
    "DrivAge",
    "BonusMalus",
    "VehBrand",
    "VehGas",
    "Density",
    "Region",
]
CLAIM_COLUMNS = [ID_COL, CLAIM_AMOUNT_COL]

# Outlier trimming quantiles
RESPONSE_LOWER_QUANTILE = 0.01
RESPONSE_UPPER_QUANTILE = 0.99
FEATURE_UPPER_QUANTILE = 0.999
MAX_EXPOSURE = 1.0

# [0, .25), [.25, .75), [.75, 1), {1}
EXPOSURE_BREAKS = [0.25, 0.75, 1.0]

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


@dataclass(frozen=True)
class PipelineConfig:
    """Run settings for one pipeline execution."""

    random_state: int = RANDOM_STATE
    train_prop: float = TRAIN_PROP
    cv_folds: int = CV_FOLDS
    cv_repeats: int = CV_REPEATS
    strata_bins: int = STRATA_BINS
    n_jobs: int = 1
    save_workflows: bool = False

    def __post_init__(self):
        if not 0.0 < self.train_prop < 1.0:
            raise ConfigError(f"train_prop must be in (0, 1), got {self.train_prop}")
        if self.cv_folds < 2:
            raise ConfigError(f"cv_folds must be at least 2, got {self.cv_folds}")
        if self.cv_repeats < 1:
            raise ConfigError(f"cv_repeats must be at least 1, got {self.cv_repeats}")
        if self.strata_bins < 1:
            raise ConfigError(f"strata_bins must be at least 1, got {self.strata_bins}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(
    path: Optional[Union[str, Path]] = None, **overrides: Any
) -> PipelineConfig:
    """Build a PipelineConfig from defaults, an optional YAML file and overrides.

    The YAML file may hold the settings at top level or under a ``pipeline``
    key. Unknown keys are rejected so typos do not silently fall back to
    defaults.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise ConfigError(f"Config file not found: {cfg_path}")
        with open(cfg_path, "r") as fh:
            cfg = yaml.safe_load(fh) or {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"Config file {cfg_path} must contain a mapping")
        section = cfg["pipeline"] if "pipeline" in cfg else cfg
        section = section or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Config file {cfg_path}: pipeline section must be a mapping")
        values.update(section)

    values.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(PipelineConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

    return PipelineConfig(**values)


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
