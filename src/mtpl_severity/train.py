import argparse
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import joblib
import pandas as pd

from .config import (
    PROCESSED_DIR,
    PipelineConfig,
    configure_logging,
    load_config,
)
from .data_loader import join_with_report, load_claim_data, load_policy_data
from .evaluate import ResampleResult, collect_results, fit_resamples, last_fit
from .features import FeatureTransformer
from .models import get_fitting_units, inspect_workflow, registry_table
from .ranking import compare_ranks, rank_models, summarize_metrics
from .splits import MODEL_STREAM, TrainTestSplit, derive_seed, initial_split, repeated_folds

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    config: PipelineConfig
    modeling_table: pd.DataFrame
    transformer: FeatureTransformer
    split: TrainTestSplit
    registry: pd.DataFrame
    cv_results: List[ResampleResult]
    test_results: List[ResampleResult]
    cv_ranking: pd.DataFrame
    test_ranking: pd.DataFrame
    rank_comparison: pd.DataFrame
    inspection: Dict[str, pd.DataFrame] = field(default_factory=dict)
    join_summary: Dict[str, int] = field(default_factory=dict)

    def tables(self) -> Dict[str, pd.DataFrame]:
        cv = collect_results(self.cv_results)
        test = collect_results(self.test_results)
        return {
            "modeling_table": self.modeling_table,
            "registry": self.registry,
            "cv_metrics": cv["metrics"],
            "cv_summary": summarize_metrics(cv["metrics"]),
            "cv_predictions": cv["predictions"],
            "cv_failures": cv["failures"],
            "cv_timings": cv["timings"],
            "test_metrics": test["metrics"],
            "test_predictions": test["predictions"],
            "test_failures": test["failures"],
            "test_timings": test["timings"],
            "cv_ranking": self.cv_ranking,
            "test_ranking": self.test_ranking,
            "rank_comparison": self.rank_comparison,
        }

    def best_model(self) -> str:
        return str(self.cv_ranking.iloc[0]["model"])


def run_pipeline(
    policies: pd.DataFrame,
    claims: pd.DataFrame,
    config: Optional[PipelineConfig] = None,
) -> PipelineResult:
    """Joiner -> Transformer -> Splitter -> CV and test evaluation -> Ranker."""
    config = config or PipelineConfig()
    logger.info("Running pipeline with %s", config.to_dict())

    joined, report = join_with_report(policies, claims)

    transformer = FeatureTransformer()
    modeling_table = transformer.fit_transform(joined)

    split = initial_split(
        modeling_table,
        prop=config.train_prop,
        seed=config.random_state,
        n_bins=config.strata_bins,
    )
    folds = repeated_folds(
        split.train,
        n_splits=config.cv_folds,
        n_repeats=config.cv_repeats,
        seed=config.random_state,
        n_bins=config.strata_bins,
    )

    units = get_fitting_units(random_state=derive_seed(config.random_state, MODEL_STREAM))

    cv_results = [
        fit_resamples(
            unit,
            split.train,
            folds,
            phase="cv",
            save_workflow=config.save_workflows,
            n_jobs=config.n_jobs,
        )
        for unit in units
    ]
    test_results = [last_fit(unit, split) for unit in units]

    cv_ranking = rank_models(collect_results(cv_results)["metrics"], metric="rmse")
    test_ranking = rank_models(collect_results(test_results)["metrics"], metric="rmse")
    comparison = compare_ranks(cv_ranking, test_ranking)
    logger.info("Resampled ranking (RMSE):\n%s", cv_ranking.to_string(index=False))
    logger.info("Held-out ranking (RMSE):\n%s", test_ranking.to_string(index=False))

    inspection = {}
    for result in test_results:
        workflow = result.workflows.get("test")
        if workflow is not None:
            inspection[result.model] = inspect_workflow(workflow)

    return PipelineResult(
        config=config,
        modeling_table=modeling_table,
        transformer=transformer,
        split=split,
        registry=registry_table(units),
        cv_results=cv_results,
        test_results=test_results,
        cv_ranking=cv_ranking,
        test_ranking=test_ranking,
        rank_comparison=comparison,
        inspection=inspection,
        join_summary={
            "n_policies": report.n_policies,
            "n_claim_policies": report.n_claim_policies,
            "n_matched": report.n_matched,
            "n_count_mismatches": report.n_count_mismatches,
        },
    )


def save_artifacts(result: PipelineResult, output_dir: Path = PROCESSED_DIR) -> Path:
    """Write tables as CSV, test-phase workflows with joblib and a metadata file."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    for name, table in result.tables().items():
        table.to_csv(output_dir / f"{name}.csv", index=False)

    inspection_dir = output_dir / "inspection"
    inspection_dir.mkdir(exist_ok=True)
    for model, table in result.inspection.items():
        table.to_csv(inspection_dir / f"{model}.csv", index=False)

    model_dir = output_dir / "models"
    model_dir.mkdir(exist_ok=True)
    for phase_results in (result.test_results, result.cv_results):
        for res in phase_results:
            for fold_id, workflow in res.workflows.items():
                joblib.dump(workflow, model_dir / f"{res.model}_{fold_id}.joblib")

    metadata = {
        "config": result.config.to_dict(),
        "trim_thresholds": result.transformer.thresholds_.to_dict(),
        "trim_stage_rows": result.transformer.stage_rows_,
        "join": result.join_summary,
        "n_train": len(result.split.train),
        "n_test": len(result.split.test),
        "split_stratified": result.split.stratified,
        "best_model": result.best_model(),
    }
    with open(output_dir / "metadata.json", "w") as fh:
        json.dump(metadata, fh, indent=2)

    logger.info("Saved artifacts to %s", output_dir.resolve())
    return output_dir


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Train and compare claim severity models on freMTPL2 data."
    )
    parser.add_argument("--policies", default=None, help="freMTPL2freq CSV")
    parser.add_argument("--claims", default=None, help="freMTPL2sev CSV")
    parser.add_argument("--config", default=None, help="YAML pipeline config")
    parser.add_argument("--output", default=str(PROCESSED_DIR))
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    configure_logging(args.log_level.upper())
    config = load_config(args.config, n_jobs=args.n_jobs, random_state=args.seed)

    policies = load_policy_data(args.policies)
    claims = load_claim_data(args.claims)

    result = run_pipeline(policies, claims, config)
    save_artifacts(result, Path(args.output))
    logger.info("Best model by resampled RMSE: %s", result.best_model())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
