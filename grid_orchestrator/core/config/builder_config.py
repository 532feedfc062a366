"""Model builder configuration model.

This module defines the BuilderConfig schema used to locate and instantiate
the external model builder from JSON configuration.
"""

from __future__ import annotations

import importlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from grid_orchestrator.core.domain.errors import ConfigValidationError
from grid_orchestrator.core.ports.model_builder import ModelBuilder


class BuilderConfig(BaseModel):
    """Builder config that collects arbitrary extra keys into ``params``.

    JSON example:
        "builder": {
          "class_path": "my_builders.gbm:GbmBuilder",
          "cluster_url": "http://localhost:54321",
          "timeout_secs": 600
        }

    Result:
        class_path="my_builders.gbm:GbmBuilder"
        params={"cluster_url": "http://localhost:54321", "timeout_secs": 600}
    """

    class_path: str = Field(..., min_length=1, pattern=r"^[\w.]+:\w+$")

    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _collect_extras_into_params(cls, data: Any) -> Any:
        """Collect unknown top-level keys into the ``params`` mapping."""
        if not isinstance(data, dict):
            return data

        d = dict(data)

        explicit_params = d.pop("params", None)

        reserved = {"class_path"}

        extras = {k: v for k, v in d.items() if k not in reserved}

        for k in extras.keys():
            d.pop(k, None)

        merged: dict[str, Any] = {}
        if isinstance(explicit_params, dict):
            merged.update(explicit_params)
        merged.update(extras)

        d["params"] = merged
        return d

    def create_builder(self) -> ModelBuilder:
        """Import ``module:Class`` and instantiate it with ``params``."""
        module_path, class_name = self.class_path.split(":")
        try:
            module = importlib.import_module(module_path)
        except ImportError as exc:
            raise ConfigValidationError(f"cannot import builder module '{module_path}'") from exc

        cls = getattr(module, class_name, None)
        if cls is None:
            raise ConfigValidationError(f"module '{module_path}' has no class '{class_name}'")

        builder = cls(**dict(self.params))
        if not callable(getattr(builder, "build", None)):
            raise ConfigValidationError(f"{self.class_path} does not provide a build() method")
        return builder
