import pandas as pd
import pytest

from mtpl_severity.ranking import compare_ranks, rank_models, summarize_metrics


def _metrics(values, metric="rmse"):
    rows = []
    for model, fold_values in values.items():
        for i, v in enumerate(fold_values, start=1):
            rows.append(
                {"model": model, "phase": "cv", "fold_id": f"Fold{i}", "metric": metric, "value": v}
            )
    return pd.DataFrame(rows)


def test_rank_ascending_by_rmse():
    ranking = rank_models(_metrics({"A": [0.9], "B": [0.85], "C": [1.0]}))

    assert ranking["model"].tolist() == ["B", "A", "C"]
    assert ranking.set_index("model")["rank"].to_dict() == {"B": 1, "A": 2, "C": 3}


def test_rank_uses_fold_means():
    ranking = rank_models(_metrics({"A": [0.5, 1.5], "B": [0.9, 0.9]}))

    assert ranking.set_index("model").loc["A", "mean"] == pytest.approx(1.0)
    assert ranking["model"].tolist() == ["B", "A"]
    assert ranking["n"].tolist() == [2, 2]


def test_r2_ranks_descending():
    ranking = rank_models(_metrics({"A": [0.2], "B": [0.4]}, metric="r2"), metric="r2")

    assert ranking["model"].tolist() == ["B", "A"]


def test_rank_missing_metric():
    with pytest.raises(ValueError):
        rank_models(_metrics({"A": [0.2]}), metric="mae")


def test_summarize_metrics_std_err():
    summary = summarize_metrics(_metrics({"A": [1.0, 3.0], "B": [2.0]}))
    by_model = summary.set_index("model")

    assert by_model.loc["A", "std_err"] == pytest.approx(1.0)
    assert by_model.loc["B", "std_err"] == 0.0


def test_compare_ranks():
    cv = rank_models(_metrics({"A": [0.9], "B": [0.85], "C": [1.0]}))
    test = rank_models(_metrics({"A": [0.8], "B": [0.95], "C": [1.1]}))

    comparison = compare_ranks(cv, test)

    assert comparison["model"].tolist() == ["B", "A", "C"]
    assert comparison["rank_test"].tolist() == [2, 1, 3]
    assert comparison["rank_change"].tolist() == [1, -1, 0]
