import pytest
import yaml

from mtpl_severity.config import PipelineConfig, load_config
from mtpl_severity.exceptions import ConfigError


def test_defaults():
    config = load_config()

    assert config.random_state == 2021
    assert config.train_prop == 0.8
    assert config.cv_folds == 10
    assert config.cv_repeats == 5


def test_load_yaml_with_overrides(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump({"pipeline": {"cv_folds": 5, "n_jobs": 4}}))

    config = load_config(path, n_jobs=2, random_state=None)

    assert config.cv_folds == 5
    assert config.n_jobs == 2
    assert config.random_state == 2021


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump({"cv_fold": 5}))

    with pytest.raises(ConfigError, match="cv_fold"):
        load_config(path)


def test_missing_file():
    with pytest.raises(ConfigError):
        load_config("does/not/exist.yaml")


@pytest.mark.parametrize("kwargs", [{"train_prop": 1.0}, {"cv_folds": 1}, {"cv_repeats": 0}])
def test_invalid_values(kwargs):
    with pytest.raises(ConfigError):
        PipelineConfig(**kwargs)


def test_empty_pipeline_section_uses_defaults(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text("pipeline:\n")

    config = load_config(path)

    assert config == PipelineConfig()


def test_pipeline_section_must_be_mapping(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text("pipeline: 5\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)
