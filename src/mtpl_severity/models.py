from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, List

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.pipeline import Pipeline

from .config import RANDOM_STATE
from .preprocessing import build_full_pipeline, describe_recipes


@dataclass(frozen=True)
class FittingUnit:
    """A (preprocessing recipe, algorithm) pair trained and evaluated as one."""

    name: str
    recipe: str
    estimator_factory: Callable[[], BaseEstimator]

    def make_workflow(self) -> Pipeline:
        return build_full_pipeline(self.recipe, self.estimator_factory())

    @property
    def algorithm(self) -> str:
        return type(self.estimator_factory()).__name__


def get_fitting_units(random_state: int = RANDOM_STATE) -> List[FittingUnit]:
    """
    The explicitly paired fitting units, in reporting order.

    Pairs are listed by hand rather than crossed: the linear model only ever
    sees reference-level dummies, since full one-hot columns plus an intercept
    are rank deficient. Tree models keep library defaults; no tuning.
    """
    return [
        FittingUnit(
            name="dummy_linear_reg",
            recipe="dummy",
            estimator_factory=LinearRegression,
        ),
        FittingUnit(
            name="native_random_forest",
            recipe="native",
            estimator_factory=partial(
                RandomForestRegressor, random_state=random_state, n_jobs=1
            ),
        ),
        FittingUnit(
            name="one_hot_boosted_trees",
            recipe="one_hot",
            estimator_factory=partial(GradientBoostingRegressor, random_state=random_state),
        ),
    ]


def registry_table(units: List[FittingUnit]) -> pd.DataFrame:
    recipes = describe_recipes()
    return pd.DataFrame(
        [
            {
                "model": u.name,
                "recipe": u.recipe,
                "recipe_description": recipes[u.recipe],
                "algorithm": u.algorithm,
            }
            for u in units
        ]
    )


# --------------------------------------------------------------------
# Inspection of fitted workflows
# --------------------------------------------------------------------
def _feature_names(workflow: Pipeline) -> np.ndarray:
    return workflow.named_steps["preprocessing"].get_feature_names_out()


def coefficient_table(workflow: Pipeline) -> pd.DataFrame:
    """Coefficients of a fitted linear workflow, intercept first."""
    model = workflow.named_steps["model"]
    names = _feature_names(workflow)
    coefs = np.ravel(model.coef_)
    table = pd.DataFrame({"term": names, "estimate": coefs})
    intercept = pd.DataFrame({"term": ["(Intercept)"], "estimate": [float(model.intercept_)]})
    return pd.concat([intercept, table], ignore_index=True)


def importance_table(workflow: Pipeline) -> pd.DataFrame:
    """Impurity-based variable importance of a fitted tree workflow, largest first."""
    model = workflow.named_steps["model"]
    names = _feature_names(workflow)
    table = pd.DataFrame({"variable": names, "importance": model.feature_importances_})
    return table.sort_values("importance", ascending=False).reset_index(drop=True)


def inspect_workflow(workflow: Pipeline) -> pd.DataFrame:
    model = workflow.named_steps["model"]
    if hasattr(model, "coef_"):
        return coefficient_table(workflow)
    if hasattr(model, "feature_importances_"):
        return importance_table(workflow)
    raise TypeError(f"No inspection table for {type(model).__name__}")
