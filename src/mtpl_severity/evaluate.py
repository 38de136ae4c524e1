from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import mean_absolute_error, r2_score, root_mean_squared_error
from sklearn.pipeline import Pipeline

from .config import ID_COL
from .models import FittingUnit
from .preprocessing import split_xy
from .splits import Fold, TrainTestSplit, split_frame, train_test_folds

logger = logging.getLogger(__name__)

METRIC_COLUMNS = ["model", "phase", "fold_id", "metric", "value"]
PREDICTION_COLUMNS = [
    "model",
    "phase",
    "fold_id",
    "row",
    ID_COL,
    "observed",
    "predicted",
    "observed_original",
    "predicted_original",
]
FAILURE_COLUMNS = ["model", "phase", "fold_id", "error"]
TIMING_COLUMNS = ["model", "phase", "fold_id", "status", "fit_seconds"]


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    rmse = root_mean_squared_error(y_true, y_pred)
    r2 = r2_score(y_true, y_pred)
    mae = mean_absolute_error(y_true, y_pred)

    return {
        "rmse": float(rmse),
        "r2": float(r2),
        "mae": float(mae),
    }


@dataclass
class FoldOutcome:
    model: str
    fold_id: str
    metrics: Optional[Dict[str, float]] = None
    predictions: Optional[pd.DataFrame] = None
    workflow: Optional[Pipeline] = None
    error: Optional[str] = None
    fit_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ResampleResult:
    """Everything one fitting unit produced over one resampling plan."""

    model: str
    phase: str
    metrics: pd.DataFrame
    predictions: pd.DataFrame
    failures: pd.DataFrame
    timings: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=TIMING_COLUMNS))
    workflows: Dict[str, Pipeline] = field(default_factory=dict)

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def mean_metrics(self) -> Dict[str, float]:
        if self.metrics.empty:
            return {}
        return self.metrics.groupby("metric")["value"].mean().to_dict()


def _fit_fold(
    unit: FittingUnit,
    data: pd.DataFrame,
    fold: Fold,
    phase: str,
    save_workflow: bool,
) -> FoldOutcome:
    start = time.time()
    try:
        X, y = split_xy(data)
        workflow = unit.make_workflow()
        workflow.fit(X.iloc[fold.train_index], y.iloc[fold.train_index])

        y_obs = y.iloc[fold.test_index].to_numpy(dtype=float)
        y_pred = np.asarray(workflow.predict(X.iloc[fold.test_index]), dtype=float)
        metrics = regression_metrics(y_obs, y_pred)
    except Exception as exc:
        logger.warning("%s | %s failed: %s: %s", unit.name, fold.fold_id, type(exc).__name__, exc)
        return FoldOutcome(
            model=unit.name,
            fold_id=fold.fold_id,
            error=f"{type(exc).__name__}: {exc}",
            fit_time=time.time() - start,
        )

    ids = (
        data[ID_COL].iloc[fold.test_index].to_numpy()
        if ID_COL in data.columns
        else np.full(len(fold.test_index), np.nan)
    )
    predictions = pd.DataFrame(
        {
            "model": unit.name,
            "phase": phase,
            "fold_id": fold.fold_id,
            "row": fold.test_index,
            ID_COL: ids,
            "observed": y_obs,
            "predicted": y_pred,
            # the response is modelled on log10 scale
            "observed_original": np.power(10.0, y_obs),
            "predicted_original": np.power(10.0, y_pred),
        },
        columns=PREDICTION_COLUMNS,
    )
    fit_time = time.time() - start
    logger.debug("%s | %s RMSE %.4f (%.2fs)", unit.name, fold.fold_id, metrics["rmse"], fit_time)

    return FoldOutcome(
        model=unit.name,
        fold_id=fold.fold_id,
        metrics=metrics,
        predictions=predictions,
        workflow=workflow if save_workflow else None,
        fit_time=fit_time,
    )


def fit_resamples(
    unit: FittingUnit,
    data: pd.DataFrame,
    folds: Sequence[Fold],
    phase: str = "cv",
    save_workflow: bool = False,
    n_jobs: int = 1,
) -> ResampleResult:
    """
    Fit ``unit`` on every fold's training rows and score its held-out rows.

    Folds are independent and may run on a joblib worker pool. Outcomes are
    keyed by fold id and reported in plan order, so the tables do not depend
    on completion order. A fold that raises is logged, listed in ``failures``
    and left out of the metrics.
    """
    logger.info("Fitting %s on %d resamples (%s)", unit.name, len(folds), phase)

    outcomes = Parallel(n_jobs=n_jobs)(
        delayed(_fit_fold)(unit, data, fold, phase, save_workflow) for fold in folds
    )
    by_fold = {o.fold_id: o for o in outcomes}
    ordered = [by_fold[f.fold_id] for f in folds]

    metric_rows = []
    prediction_frames = []
    failure_rows = []
    timing_rows = []
    workflows: Dict[str, Pipeline] = {}

    for outcome in ordered:
        timing_rows.append(
            {
                "model": unit.name,
                "phase": phase,
                "fold_id": outcome.fold_id,
                "status": "ok" if outcome.ok else "failed",
                "fit_seconds": outcome.fit_time,
            }
        )
        if not outcome.ok:
            failure_rows.append(
                {"model": unit.name, "phase": phase, "fold_id": outcome.fold_id, "error": outcome.error}
            )
            continue
        for metric, value in outcome.metrics.items():
            metric_rows.append(
                {
                    "model": unit.name,
                    "phase": phase,
                    "fold_id": outcome.fold_id,
                    "metric": metric,
                    "value": value,
                }
            )
        prediction_frames.append(outcome.predictions)
        if outcome.workflow is not None:
            workflows[outcome.fold_id] = outcome.workflow

    if failure_rows:
        logger.warning("%s: %d of %d resamples failed", unit.name, len(failure_rows), len(folds))

    predictions = (
        pd.concat(prediction_frames, ignore_index=True)
        if prediction_frames
        else pd.DataFrame(columns=PREDICTION_COLUMNS)
    )
    result = ResampleResult(
        model=unit.name,
        phase=phase,
        metrics=pd.DataFrame(metric_rows, columns=METRIC_COLUMNS),
        predictions=predictions,
        failures=pd.DataFrame(failure_rows, columns=FAILURE_COLUMNS),
        timings=pd.DataFrame(timing_rows, columns=TIMING_COLUMNS),
        workflows=workflows,
    )
    logger.info("%s (%s) mean metrics: %s", unit.name, phase, result.mean_metrics())
    return result


def last_fit(unit: FittingUnit, split: TrainTestSplit) -> ResampleResult:
    """Fit on the full training partition, evaluate on the test partition and
    keep the fitted workflow under fold id ``"test"``."""
    return fit_resamples(
        unit,
        split_frame(split),
        train_test_folds(split),
        phase="test",
        save_workflow=True,
    )


def collect_results(results: Sequence[ResampleResult]) -> Dict[str, pd.DataFrame]:
    """Stack metrics, predictions, failures and fit timings across fitting units."""

    def _stack(frames: List[pd.DataFrame], columns: List[str]) -> pd.DataFrame:
        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame(columns=columns)
        return pd.concat(frames, ignore_index=True)

    return {
        "metrics": _stack([r.metrics for r in results], METRIC_COLUMNS),
        "predictions": _stack([r.predictions for r in results], PREDICTION_COLUMNS),
        "failures": _stack([r.failures for r in results], FAILURE_COLUMNS),
        "timings": _stack([r.timings for r in results], TIMING_COLUMNS),
    }
