from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

import mlflow

if TYPE_CHECKING:
    from grid_orchestrator.search.grid_job import JobStatus
    from grid_orchestrator.search.summary import GridResultSummary

LOGGER = logging.getLogger(__name__)

DEFAULT_EXPERIMENT = "grid-search"


class MlflowGridLogger:
    """Logs grid-level progress and results to MLflow.

    Tracking is configured via environment variables:
    - MLFLOW_TRACKING_URI: HTTP(S) address of the MLflow tracking server.
      Example: http://mlflow.ml.svc.cluster.local:5000

    Without MLFLOW_TRACKING_URI the logger is disabled. It is best-effort:
    callers catch exceptions and continue.
    """

    def __init__(self, experiment: str = DEFAULT_EXPERIMENT) -> None:
        self._experiment = experiment
        self._tracking_uri = os.environ.get("MLFLOW_TRACKING_URI")
        if self._tracking_uri:
            mlflow.set_tracking_uri(self._tracking_uri)

    def is_enabled(self) -> bool:
        return bool(self._tracking_uri)

    def log(
        self,
        *,
        status: JobStatus,
        summary: GridResultSummary,
        strategy: str,
        parallelism: str,
    ) -> None:
        """Log one grid run as an MLflow run named after the grid id."""
        if not self.is_enabled():
            return

        # set_experiment creates the experiment if missing, without a
        # separate get/create round trip.
        mlflow.set_experiment(self._experiment)

        with mlflow.start_run(run_name=status.grid_id):
            # Parameters
            mlflow.log_param("strategy", strategy)
            mlflow.log_param("parallelism", parallelism)
            mlflow.log_param("total_models", status.total_models)

            # Metrics
            mlflow.log_metric("models_built", summary.model_count)
            mlflow.log_metric("models_failed", summary.failure_count)
            mlflow.log_metric("models_recovered", status.recovered_count)
            if summary.best_metric is not None:
                mlflow.log_metric("best_metric", summary.best_metric)
            if status.started_at is not None and status.finished_at is not None:
                mlflow.log_metric(
                    "duration_seconds",
                    (status.finished_at - status.started_at).total_seconds(),
                )

            # Tags
            mlflow.set_tag("grid_id", status.grid_id)
            mlflow.set_tag("state", status.state.value)
            if status.stop_reason:
                mlflow.set_tag("stop_reason", status.stop_reason)
            if summary.best_model_id:
                mlflow.set_tag("best_model_id", summary.best_model_id)

        LOGGER.info(
            "MLflow grid log submitted",
            extra={
                "experiment": self._experiment,
                "grid_id": status.grid_id,
                "state": status.state.value,
            },
        )
