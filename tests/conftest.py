import numpy as np
import pandas as pd
import pytest

from mtpl_severity.data_loader import join_claims
from mtpl_severity.features import FeatureTransformer


def _make_tables(n_policies: int = 1500, seed: int = 7):
    """Synthetic freMTPL2freq / freMTPL2sev look-alikes."""
    rng = np.random.default_rng(seed)
    ids = np.arange(1, n_policies + 1)

    exposure = rng.uniform(0.05, 1.0, n_policies).round(2)
    exposure[rng.choice(n_policies, 150, replace=False)] = 1.0
    exposure[:3] = [1.3, 1.1, 2.0]

    claim_nb = rng.choice([0, 1, 1, 1, 2, 3], size=n_policies)
    policies = pd.DataFrame(
        {
            "IDpol": ids,
            "ClaimNb": claim_nb,
            "Exposure": exposure,
            "Area": rng.choice(list("ABCDEF"), n_policies),
            "VehPower": rng.integers(4, 13, n_policies),
            "VehAge": rng.integers(0, 25, n_policies),
            "DrivAge": rng.integers(18, 86, n_policies),
            "BonusMalus": rng.integers(50, 151, n_policies),
            "VehBrand": rng.choice([f"B{i}" for i in range(1, 7)], n_policies),
            "VehGas": rng.choice(["Diesel", "Regular"], n_policies),
            "Density": rng.integers(1, 20000, n_policies),
            "Region": rng.choice(["R11", "R24", "R52", "R82", "R93"], n_policies),
        }
    )

    claim_ids = np.repeat(ids, claim_nb)
    scale = 1 + (policies.set_index("IDpol").loc[claim_ids, "BonusMalus"].to_numpy() - 50) / 100
    claims = pd.DataFrame(
        {
            "IDpol": claim_ids,
            "ClaimAmount": (rng.lognormal(mean=7.0, sigma=1.0, size=len(claim_ids)) * scale).round(2),
        }
    )

    # reported counts that disagree with the claim table
    mismatched = policies.index[(policies["ClaimNb"] == 1)][:20]
    policies.loc[mismatched, "ClaimNb"] = 2

    return policies, claims


@pytest.fixture(scope="session")
def raw_tables():
    return _make_tables()


@pytest.fixture
def policies(raw_tables):
    return raw_tables[0].copy()


@pytest.fixture
def claims(raw_tables):
    return raw_tables[1].copy()


@pytest.fixture
def joined(policies, claims):
    return join_claims(policies, claims)


@pytest.fixture
def small_policies():
    return pd.DataFrame(
        {
            "IDpol": [1, 2, 3, 4],
            "ClaimNb": [1, 2, 0, 2],
            "Exposure": [0.5, 1.0, 0.3, 0.8],
            "Area": ["A", "B", "C", "D"],
            "VehPower": [5, 6, 7, 8],
            "VehAge": [0, 3, 10, 2],
            "DrivAge": [30, 45, 60, 22],
            "BonusMalus": [50, 60, 100, 80],
            "VehBrand": ["B1", "B2", "B12", "B1"],
            "VehGas": ["Diesel", "Regular", "Diesel", "Regular"],
            "Density": [100, 2000, 30, 500],
            "Region": ["R11", "R24", "R52", "R11"],
        }
    )


@pytest.fixture
def small_claims():
    # policy 4 reports two claims but has only one claim row
    return pd.DataFrame(
        {
            "IDpol": [1, 2, 2, 4],
            "ClaimAmount": [1000.0, 250.0, 750.0, 400.0],
        }
    )


@pytest.fixture
def response_table():
    rng = np.random.default_rng(2021)
    n = 1000
    return pd.DataFrame(
        {
            "IDpol": np.arange(1, n + 1),
            "ClaimAmountExposure": rng.normal(3.0, 0.5, n),
            "x": rng.normal(size=n),
        }
    )


@pytest.fixture
def modeling_table(joined):
    return FeatureTransformer().fit_transform(joined)
