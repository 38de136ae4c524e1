import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.exceptions import NotFittedError

from .config import (
    CAT_FEATURES,
    CLAIM_AMOUNT_COL,
    DROPPED_FEATURES,
    EXPOSURE_BAND_COL,
    EXPOSURE_BREAKS,
    EXPOSURE_COL,
    FEATURE_UPPER_QUANTILE,
    MAX_EXPOSURE,
    NUM_FEATURES,
    ORDINAL_FEATURES,
    RESPONSE_LOWER_QUANTILE,
    RESPONSE_UPPER_QUANTILE,
    TARGET_COL,
)
from .data_loader import join_claims, require_columns
from .exceptions import TransformError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrimThresholds:
    """Cut-offs recorded while fitting, each on the data left by the previous step."""

    response_lower: float
    response_upper: float
    bonus_malus_upper: float
    vehicle_age_upper: float
    max_exposure: float = MAX_EXPOSURE

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


# --------------------------------------------------------------------
# Pure stages: each returns a new frame and leaves its input untouched
# --------------------------------------------------------------------
def add_response(df: pd.DataFrame) -> pd.DataFrame:
    """ClaimAmountExposure = total claim amount / exposure."""
    require_columns(df, [CLAIM_AMOUNT_COL, EXPOSURE_COL], "modeling")
    out = df.copy()

    non_positive = ~(out[EXPOSURE_COL] > 0)
    if non_positive.any():
        logger.warning(
            "Excluding %d rows with non-positive exposure", int(non_positive.sum())
        )
        out = out.loc[~non_positive].copy()

    out[TARGET_COL] = out[CLAIM_AMOUNT_COL] / out[EXPOSURE_COL]
    return out


def cast_types(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in CAT_FEATURES:
        if col in out.columns:
            out[col] = out[col].astype(str).astype("category")
    for col in ORDINAL_FEATURES:
        if col in out.columns:
            levels = sorted(out[col].dropna().unique())
            out[col] = pd.Categorical(out[col], categories=levels, ordered=True)
    for col in NUM_FEATURES:
        if col in out.columns:
            out[col] = out[col].astype(np.int64)
    return out


def log10_positive(values: pd.Series) -> pd.Series:
    """log10 that refuses non-positive (or missing) input instead of returning nan/-inf."""
    numeric = pd.Series(values).astype(float)
    bad = ~(numeric > 0)
    if bad.any():
        raise TransformError(
            f"log10 requires positive values; column {numeric.name!r} "
            f"has {int(bad.sum())} non-positive or missing entries"
        )
    return np.log10(numeric)


def trim_between(df: pd.DataFrame, col: str, lower: float, upper: float) -> pd.DataFrame:
    mask = (df[col] >= lower) & (df[col] <= upper)
    return df.loc[mask].copy()


def trim_below(df: pd.DataFrame, col: str, upper: float) -> pd.DataFrame:
    return df.loc[df[col] < upper].copy()


def trim_at_most(df: pd.DataFrame, col: str, upper: float) -> pd.DataFrame:
    return df.loc[df[col] <= upper].copy()


def log_response(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out[TARGET_COL] = log10_positive(out[TARGET_COL])
    return out


def drop_features(df: pd.DataFrame, columns: Sequence[str] = DROPPED_FEATURES) -> pd.DataFrame:
    return df.drop(columns=list(columns), errors="ignore")


def log_features(df: pd.DataFrame) -> pd.DataFrame:
    """Density, BonusMalus and VehPower on log10 scale; VehAge as log10(VehAge + 10)."""
    out = df.copy()
    out["Density"] = log10_positive(out["Density"])
    out["BonusMalus"] = log10_positive(out["BonusMalus"])
    # VehAge is 0 for new vehicles
    out["VehAge"] = log10_positive(out["VehAge"].astype(float) + 10)
    out["VehPower"] = log10_positive(out["VehPower"].astype(float))
    return out


def bucket_exposure(exposure: pd.Series) -> pd.Series:
    """
    Ordered integer codes for exposure:
      1: [0, .25)  2: [.25, .75)  3: [.75, 1)  4: exactly 1
    """
    codes = np.digitize(np.asarray(exposure, dtype=float), bins=EXPOSURE_BREAKS) + 1
    return pd.Series(codes.astype(np.int64), index=getattr(exposure, "index", None))


def add_exposure_band(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out[EXPOSURE_BAND_COL] = bucket_exposure(out[EXPOSURE_COL])
    return out


# --------------------------------------------------------------------
# Transformer
# --------------------------------------------------------------------
class FeatureTransformer(BaseEstimator, TransformerMixin):
    """sklearn-compatible transformer that turns joined policy/claim rows into
    the modeling table.

    ``fit`` walks the trimming steps in order and records each quantile on the
    rows that survived the previous step:

      a. response within [P1, P99]
      b. log10 of the response
      c. drop Area and VehGas
      d. BonusMalus < P99.9
      e. VehAge < P99.9
      f. Exposure <= 1

    ``transform`` replays the same ordered stages with the recorded cut-offs,
    then log-transforms Density, BonusMalus, VehAge (+10) and VehPower and adds
    the exposure band. Rows are only ever removed.
    """

    def __init__(
        self,
        response_quantiles: Tuple[float, float] = (
            RESPONSE_LOWER_QUANTILE,
            RESPONSE_UPPER_QUANTILE,
        ),
        feature_quantile: float = FEATURE_UPPER_QUANTILE,
        max_exposure: float = MAX_EXPOSURE,
    ):
        self.response_quantiles = response_quantiles
        self.feature_quantile = feature_quantile
        self.max_exposure = max_exposure

    def fit(self, X: pd.DataFrame, y: Optional[pd.Series] = None):
        df = cast_types(add_response(X))
        stage_rows: List[Tuple[str, int]] = [("input", len(df))]

        lo_q, hi_q = self.response_quantiles
        lower = float(df[TARGET_COL].quantile(lo_q))
        upper = float(df[TARGET_COL].quantile(hi_q))
        df = trim_between(df, TARGET_COL, lower, upper)
        stage_rows.append(("response", len(df)))

        bonus_malus_upper = float(df["BonusMalus"].quantile(self.feature_quantile))
        df = trim_below(df, "BonusMalus", bonus_malus_upper)
        stage_rows.append(("BonusMalus", len(df)))

        vehicle_age_upper = float(df["VehAge"].quantile(self.feature_quantile))
        df = trim_below(df, "VehAge", vehicle_age_upper)
        stage_rows.append(("VehAge", len(df)))

        df = trim_at_most(df, EXPOSURE_COL, self.max_exposure)
        stage_rows.append(("Exposure", len(df)))

        self.thresholds_ = TrimThresholds(
            response_lower=lower,
            response_upper=upper,
            bonus_malus_upper=bonus_malus_upper,
            vehicle_age_upper=vehicle_age_upper,
            max_exposure=self.max_exposure,
        )
        self.stage_rows_ = stage_rows

        logger.info("Trimming thresholds: %s", self.thresholds_.to_dict())
        logger.info("Rows after each trimming step: %s", stage_rows)
        return self

    def _check_fitted(self) -> TrimThresholds:
        if not hasattr(self, "thresholds_"):
            raise NotFittedError("FeatureTransformer must be fitted before use")
        return self.thresholds_

    def filter(self, X: pd.DataFrame) -> pd.DataFrame:
        """Apply the recorded row filters on the raw (untransformed) scale.

        Filtering an already filtered table removes nothing.
        """
        t = self._check_fitted()
        df = add_response(X)
        df = trim_between(df, TARGET_COL, t.response_lower, t.response_upper)
        df = trim_below(df, "BonusMalus", t.bonus_malus_upper)
        df = trim_below(df, "VehAge", t.vehicle_age_upper)
        df = trim_at_most(df, EXPOSURE_COL, t.max_exposure)
        return df

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        t = self._check_fitted()
        n_in = len(X)

        df = cast_types(add_response(X))
        df = trim_between(df, TARGET_COL, t.response_lower, t.response_upper)
        df = log_response(df)
        df = drop_features(df)
        df = trim_below(df, "BonusMalus", t.bonus_malus_upper)
        df = trim_below(df, "VehAge", t.vehicle_age_upper)
        df = trim_at_most(df, EXPOSURE_COL, t.max_exposure)
        df = log_features(df)
        df = add_exposure_band(df)

        logger.info("Modeling table: %d of %d rows kept", len(df), n_in)
        return df.reset_index(drop=True)


def build_modeling_table(
    policies: pd.DataFrame, claims: pd.DataFrame
) -> Tuple[pd.DataFrame, FeatureTransformer]:
    """Join the two source tables and run the fitted feature transformer."""
    joined = join_claims(policies, claims)
    transformer = FeatureTransformer()
    table = transformer.fit_transform(joined)
    return table, transformer
