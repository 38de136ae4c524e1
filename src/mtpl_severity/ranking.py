import pandas as pd

# Metrics where a larger value is better; everything else ranks ascending
HIGHER_IS_BETTER = {"r2"}


def summarize_metrics(metrics: pd.DataFrame) -> pd.DataFrame:
    """Mean, standard error and fold count per (model, metric)."""
    grouped = metrics.groupby(["model", "metric"], sort=False)["value"]
    summary = grouped.agg(mean="mean", std="std", n="count").reset_index()
    summary["std_err"] = (summary["std"] / summary["n"] ** 0.5).fillna(0.0)
    return summary.drop(columns="std")


def rank_models(metrics: pd.DataFrame, metric: str = "rmse") -> pd.DataFrame:
    """
    Rank fitting units by their mean ``metric`` across folds.

    RMSE and MAE rank ascending (rank 1 = lowest error); r2 ranks descending.
    Failed folds never reach ``metrics`` so they do not pull the mean.
    """
    summary = summarize_metrics(metrics)
    summary = summary.loc[summary["metric"] == metric].copy()
    if summary.empty:
        raise ValueError(f"No values for metric {metric!r}")

    ascending = metric not in HIGHER_IS_BETTER
    summary["rank"] = summary["mean"].rank(method="min", ascending=ascending).astype(int)
    summary = summary.sort_values(["rank", "model"]).reset_index(drop=True)
    return summary[["model", "metric", "mean", "n", "std_err", "rank"]]


def compare_ranks(cv_ranking: pd.DataFrame, test_ranking: pd.DataFrame) -> pd.DataFrame:
    """Put resampled (cv) and held-out (test) rankings side by side per model."""
    cols = ["model", "mean", "rank"]
    merged = cv_ranking[cols].merge(
        test_ranking[cols], on="model", how="outer", suffixes=("_cv", "_test")
    )
    merged["rank_change"] = merged["rank_test"] - merged["rank_cv"]
    return merged.sort_values("rank_cv").reset_index(drop=True)
