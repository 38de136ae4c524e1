from typing import Dict, List

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.compose import ColumnTransformer, make_column_selector
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, OrdinalEncoder

from .config import (
    CLAIM_AMOUNT_COL,
    CLAIM_COUNT_COL,
    EXPOSURE_COL,
    ID_COL,
    TARGET_COL,
)

# Bookkeeping columns of the modeling table that are never predictors
NON_FEATURE_COLUMNS = [ID_COL, CLAIM_COUNT_COL, CLAIM_AMOUNT_COL, EXPOSURE_COL, TARGET_COL]

RECIPES = ("dummy", "native", "one_hot")


def feature_columns(df: pd.DataFrame) -> List[str]:
    return [c for c in df.columns if c not in NON_FEATURE_COLUMNS]


def split_xy(df: pd.DataFrame):
    return df[feature_columns(df)], df[TARGET_COL]


def _selectors():
    numeric_selector = make_column_selector(dtype_include=np.number)
    categorical_selector = make_column_selector(dtype_exclude=np.number)
    return numeric_selector, categorical_selector


def _dummy_transformer() -> ColumnTransformer:
    """Reference-level dummies: the first level of each factor is dropped so the
    design stays full rank next to an intercept."""
    numeric_selector, categorical_selector = _selectors()
    return ColumnTransformer(
        transformers=[
            ("num", "passthrough", numeric_selector),
            (
                "cat",
                OneHotEncoder(drop="first", handle_unknown="ignore", sparse_output=False),
                categorical_selector,
            ),
        ],
    )


def _native_transformer() -> ColumnTransformer:
    """Categories stay one column each, as integer codes the trees split on."""
    numeric_selector, categorical_selector = _selectors()
    return ColumnTransformer(
        transformers=[
            ("num", "passthrough", numeric_selector),
            (
                "cat",
                OrdinalEncoder(
                    handle_unknown="use_encoded_value",
                    unknown_value=-1,
                    encoded_missing_value=-1,
                    dtype=np.float64,
                ),
                categorical_selector,
            ),
        ],
    )


def _one_hot_transformer() -> ColumnTransformer:
    numeric_selector, categorical_selector = _selectors()
    return ColumnTransformer(
        transformers=[
            ("num", "passthrough", numeric_selector),
            (
                "cat",
                OneHotEncoder(handle_unknown="ignore", sparse_output=False),
                categorical_selector,
            ),
        ],
    )


_RECIPE_BUILDERS = {
    "dummy": _dummy_transformer,
    "native": _native_transformer,
    "one_hot": _one_hot_transformer,
}


def build_recipe(recipe: str) -> ColumnTransformer:
    """Return an unfitted column transformer for a named recipe."""
    try:
        builder = _RECIPE_BUILDERS[recipe]
    except KeyError:
        raise ValueError(f"Unknown recipe {recipe!r}; expected one of {RECIPES}") from None
    return builder()


def build_full_pipeline(recipe: str, model: BaseEstimator) -> Pipeline:
    return Pipeline(
        steps=[
            ("preprocessing", build_recipe(recipe)),
            ("model", model),
        ]
    )


def describe_recipes() -> Dict[str, str]:
    return {
        "dummy": "dummy-encoded categorical + numeric passthrough",
        "native": "no categorical encoding (integer category codes) + numeric passthrough",
        "one_hot": "one-hot-encoded categorical + numeric passthrough",
    }
