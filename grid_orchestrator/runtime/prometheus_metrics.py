from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Gauge, push_to_gateway

if TYPE_CHECKING:
    from grid_orchestrator.search.grid_job import JobStatus

LOGGER = logging.getLogger(__name__)

PUSHGATEWAY_JOB = "grid_orchestrator"


class PrometheusMetricsClient:
    """Prometheus Pushgateway client for grid search runs.

    Expected environment:
    - PROMETHEUS_PUSHGATEWAY_URL: URL to the Pushgateway.
      Example: http://pushgateway.monitoring.svc.cluster.local:9091

    Optional:
    - PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON: JSON object used as grouping key.
      Without it, pushes of concurrent grids overwrite each other.

      Example:
        {"workflow_uid": "ARGO_WORKFLOW_UID"}

    Delivery is best-effort. Callers must not fail a grid because metrics
    could not be pushed.
    """

    def __init__(self) -> None:
        self._pushgateway_url = os.environ.get("PROMETHEUS_PUSHGATEWAY_URL")
        self._grouping_key = self._load_grouping_key()
        self._registry = CollectorRegistry()
        self._gauges: dict[str, Gauge] = {}

    def is_enabled(self) -> bool:
        return self._pushgateway_url is not None

    @staticmethod
    def _load_grouping_key() -> dict[str, str]:
        raw = os.environ.get("PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON")
        if not raw:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning(
                "Invalid PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON; ignoring"
            )
            return {}

        if not isinstance(data, dict):
            return {}

        return {
            key: value
            for key, value in data.items()
            if isinstance(key, str) and isinstance(value, str)
        }

    def set_gauge(
        self,
        *,
        name: str,
        value: float,
        labels: dict[str, str],
    ) -> None:
        if not self._pushgateway_url:
            return

        # A registry rejects a second collector with the same name.
        gauge = self._gauges.get(name)
        if gauge is None:
            gauge = Gauge(
                name,
                documentation=name,
                labelnames=list(labels.keys()),
                registry=self._registry,
            )
            self._gauges[name] = gauge

        gauge.labels(**labels).set(value)

    def record_job(self, status: JobStatus) -> None:
        """Set the standard gauges of a finished grid job."""
        labels = {"grid_id": status.grid_id, "state": status.state.value}

        self.set_gauge(name="grid_models_completed", value=status.completed_count, labels=labels)
        self.set_gauge(name="grid_models_failed", value=status.failed_count, labels=labels)
        self.set_gauge(name="grid_models_recovered", value=status.recovered_count, labels=labels)
        if status.total_models is not None:
            self.set_gauge(name="grid_models_total", value=status.total_models, labels=labels)
        if status.started_at is not None and status.finished_at is not None:
            self.set_gauge(
                name="grid_duration_seconds",
                value=(status.finished_at - status.started_at).total_seconds(),
                labels=labels,
            )

    def push_all(self, *, job: str = PUSHGATEWAY_JOB) -> None:
        if not self._pushgateway_url:
            return

        push_to_gateway(
            gateway=self._pushgateway_url,
            job=job,
            registry=self._registry,
            grouping_key=self._grouping_key,
        )

        LOGGER.info(
            "Prometheus metrics pushed",
            extra={"job": job, "grouping_key": self._grouping_key},
        )
