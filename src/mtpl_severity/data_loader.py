import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .config import (
    CLAIM_AMOUNT_COL,
    CLAIM_COLUMNS,
    CLAIM_COUNT_COL,
    ID_COL,
    POLICY_COLUMNS,
    RAW_CLAIM_DATA,
    RAW_POLICY_DATA,
)
from .exceptions import SchemaError

logger = logging.getLogger(__name__)


def require_columns(df: pd.DataFrame, required: Iterable[str], table: str) -> None:
    missing = set(required) - set(df.columns)
    if missing:
        logger.error("%s table is missing required columns: %s", table, sorted(missing))
        raise SchemaError(f"{table} table is missing required columns: {sorted(missing)}")


def load_policy_data(path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
    """
    Load the per-policy risk feature table (freMTPL2freq layout).
    """
    path = Path(path) if path is not None else RAW_POLICY_DATA
    logger.info("Loading policy data from %s", path)
    df = pd.read_csv(path)
    require_columns(df, POLICY_COLUMNS, "policy")
    df[ID_COL] = df[ID_COL].astype(np.int64)
    logger.info("Policy data shape: %s", df.shape)
    return df


def load_claim_data(path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
    """
    Load the individual claim table (freMTPL2sev layout), one row per claim.
    """
    path = Path(path) if path is not None else RAW_CLAIM_DATA
    logger.info("Loading claim data from %s", path)
    df = pd.read_csv(path)
    require_columns(df, CLAIM_COLUMNS, "claim")
    df[ID_COL] = df[ID_COL].astype(np.int64)
    logger.info("Claim data shape: %s", df.shape)
    return df


def aggregate_claims(claims: pd.DataFrame) -> pd.DataFrame:
    """Claim count and total claim amount per policy id."""
    require_columns(claims, CLAIM_COLUMNS, "claim")
    agg = (
        claims.groupby(ID_COL)[CLAIM_AMOUNT_COL]
        .agg(["count", "sum"])
        .rename(columns={"count": CLAIM_COUNT_COL, "sum": CLAIM_AMOUNT_COL})
        .reset_index()
    )
    agg[CLAIM_COUNT_COL] = agg[CLAIM_COUNT_COL].astype(np.int64)
    return agg


@dataclass(frozen=True)
class JoinReport:
    n_policies: int
    n_claim_policies: int
    n_matched: int

    @property
    def n_count_mismatches(self) -> int:
        return self.n_claim_policies - self.n_matched


def join_report(policies: pd.DataFrame, claims: pd.DataFrame) -> JoinReport:
    return join_with_report(policies, claims)[1]


def _inner_join(policies: pd.DataFrame, agg: pd.DataFrame) -> pd.DataFrame:
    policies = policies.copy()
    policies[CLAIM_COUNT_COL] = policies[CLAIM_COUNT_COL].astype(np.int64)
    # the reported count in freMTPL2freq must agree with the claim rows
    return agg.merge(policies, on=[ID_COL, CLAIM_COUNT_COL], how="inner")


def join_with_report(
    policies: pd.DataFrame, claims: pd.DataFrame
) -> Tuple[pd.DataFrame, JoinReport]:
    """
    Aggregate claims per policy and inner-join them with the policy table on
    (IDpol, ClaimNb).

    Policies without claims are absent from the result. Policies whose
    reported ClaimNb disagrees with the number of claim rows are dropped as
    well; the drop is logged but not raised.
    """
    require_columns(policies, POLICY_COLUMNS, "policy")
    agg = aggregate_claims(claims)
    joined = _inner_join(policies, agg)

    mismatches = len(agg) - len(joined)
    if mismatches:
        logger.warning(
            "Dropped %d of %d claim policies whose ClaimNb does not match the claim table",
            mismatches,
            len(agg),
        )
    logger.info("Joined modeling rows: %d", len(joined))

    report = JoinReport(
        n_policies=len(policies),
        n_claim_policies=len(agg),
        n_matched=len(joined),
    )
    return joined.sort_values(ID_COL).reset_index(drop=True), report


def join_claims(policies: pd.DataFrame, claims: pd.DataFrame) -> pd.DataFrame:
    return join_with_report(policies, claims)[0]
