import json

import numpy as np
import pytest
import yaml

from mtpl_severity.config import PipelineConfig
from mtpl_severity.train import main, run_pipeline, save_artifacts

MODELS = {"dummy_linear_reg", "native_random_forest", "one_hot_boosted_trees"}


@pytest.fixture(scope="module")
def small_config():
    return PipelineConfig(cv_folds=3, cv_repeats=2, random_state=2021)


@pytest.fixture(scope="module")
def pipeline_result(raw_tables, small_config):
    policies, claims = raw_tables
    return run_pipeline(policies, claims, small_config)


def test_pipeline_ranks_every_unit(pipeline_result):
    assert set(pipeline_result.cv_ranking["model"]) == MODELS
    assert set(pipeline_result.test_ranking["model"]) == MODELS
    assert sorted(pipeline_result.cv_ranking["rank"]) == [1, 2, 3]
    assert (pipeline_result.cv_ranking["n"] == 6).all()
    assert len(pipeline_result.rank_comparison) == 3
    assert pipeline_result.best_model() in MODELS


def test_pipeline_split_covers_modeling_table(pipeline_result):
    split = pipeline_result.split
    table = pipeline_result.modeling_table

    assert len(split.train) + len(split.test) == len(table)
    assert set(split.train["IDpol"]).isdisjoint(split.test["IDpol"])


def test_pipeline_reports_join_mismatches(pipeline_result):
    assert pipeline_result.join_summary["n_count_mismatches"] >= 20


def test_pipeline_inspection_tables(pipeline_result):
    inspection = pipeline_result.inspection

    assert set(inspection) == MODELS
    assert inspection["dummy_linear_reg"]["term"].iloc[0] == "(Intercept)"
    assert "importance" in inspection["native_random_forest"].columns


def test_pipeline_is_reproducible(raw_tables, small_config, pipeline_result):
    policies, claims = raw_tables
    again = run_pipeline(policies, claims, small_config)

    np.testing.assert_array_equal(again.split.test_index, pipeline_result.split.test_index)
    np.testing.assert_allclose(
        again.cv_ranking["mean"].to_numpy(), pipeline_result.cv_ranking["mean"].to_numpy()
    )


def test_save_artifacts(tmp_path, pipeline_result):
    out = save_artifacts(pipeline_result, tmp_path / "artifacts")

    for name in [
        "modeling_table",
        "cv_metrics",
        "cv_predictions",
        "cv_timings",
        "test_predictions",
        "test_timings",
        "rank_comparison",
    ]:
        assert (out / f"{name}.csv").exists()
    for model in MODELS:
        assert (out / "models" / f"{model}_test.joblib").exists()
        assert (out / "inspection" / f"{model}.csv").exists()

    metadata = json.loads((out / "metadata.json").read_text())
    assert metadata["n_train"] == len(pipeline_result.split.train)
    assert metadata["best_model"] == pipeline_result.best_model()


def test_main_runs_from_csv(tmp_path, raw_tables):
    policies, claims = raw_tables
    policies.to_csv(tmp_path / "freq.csv", index=False)
    claims.to_csv(tmp_path / "sev.csv", index=False)
    (tmp_path / "pipeline.yaml").write_text(
        yaml.safe_dump({"pipeline": {"cv_folds": 2, "cv_repeats": 1}})
    )

    code = main(
        [
            "--policies", str(tmp_path / "freq.csv"),
            "--claims", str(tmp_path / "sev.csv"),
            "--config", str(tmp_path / "pipeline.yaml"),
            "--output", str(tmp_path / "out"),
        ]
    )

    assert code == 0
    assert (tmp_path / "out" / "cv_ranking.csv").exists()
