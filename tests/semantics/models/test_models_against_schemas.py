"""Schema conformance tests for grid orchestrator Pydantic models.

This test suite validates that the request, search criteria and checkpoint
models both accept valid inputs and reject invalid ones in alignment with
their JSON Schemas. The checkpoint schema documents the on-disk recovery
format, so every record the store writes must conform to it.
"""

# pylint: disable=line-too-long,missing-function-docstring
# pylint: disable=redefined-outer-name,global-statement
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema import validate as jsonschema_validate
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from grid_orchestrator.core.config.grid_request import GridSearchRequest
from grid_orchestrator.core.config.search_criteria import SearchCriteria
from grid_orchestrator.core.domain.grid import ModelOutcome
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.search.checkpoint import CheckpointRecord, WalkerCursor
from grid_orchestrator.search.grid_job import GridJob
from grid_orchestrator.search.recovery import CHECKPOINT_FILE

SCHEMA_REGISTRY = Registry()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_schema(name: str) -> dict:
    """
    Load JSON schema shipped with the package.
    """
    global SCHEMA_REGISTRY

    root = Path(__file__).parent.parent.parent.parent
    schema_path = root / "grid_orchestrator/core/schemas" / name

    with schema_path.open("r", encoding="utf-8") as f:
        schema = json.load(f)

    schema_id = schema.get("$id")
    if isinstance(schema_id, str) and schema_id:
        resource = Resource.from_contents(schema, default_specification=DRAFT202012)
        SCHEMA_REGISTRY = SCHEMA_REGISTRY.with_resource(schema_id, resource)

    return schema


def dump_for_jsonschema(model: Any) -> dict:
    """
    Dump a Pydantic model to a JSON-compatible dict for schema validation.
    Excludes None values so optional fields are omitted instead of null.
    """
    return model.model_dump(mode="json", exclude_none=True)


def pydantic_validate(model_type: Any, data: dict[str, Any]) -> Any:
    """
    Validate input using Pydantic for both BaseModel subclasses and the
    SearchCriteria discriminated union.
    """
    return TypeAdapter(model_type).validate_python(data)


def assert_pydantic_then_schema_ok(model_type: Any, data: dict[str, Any], schema: dict[str, Any]) -> dict:
    obj = pydantic_validate(model_type, data)
    instance = dump_for_jsonschema(obj)
    jsonschema_validate(instance=instance, schema=schema, registry=SCHEMA_REGISTRY)
    return instance


def assert_schema_invalid_but_pydantic_rejects(model_type: Any, data: dict[str, Any], schema: dict[str, Any]):
    """
    If the schema rejects, Pydantic must reject too (otherwise the model is too lax).
    """
    with pytest.raises(JsonSchemaValidationError):
        jsonschema_validate(instance=data, schema=schema, registry=SCHEMA_REGISTRY)

    with pytest.raises(PydanticValidationError):
        pydantic_validate(model_type, data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module", autouse=True)
def _load_common_schemas() -> None:
    load_schema("common.schema.json")
    load_schema("search_criteria.schema.json")


@pytest.fixture(scope="module")
def request_schema() -> dict:
    return load_schema("grid_search_request.schema.json")


@pytest.fixture(scope="module")
def criteria_schema() -> dict:
    return load_schema("search_criteria.schema.json")


@pytest.fixture(scope="module")
def checkpoint_schema() -> dict:
    return load_schema("checkpoint_record.schema.json")


# ---------------------------------------------------------------------------
# SearchCriteria
# ---------------------------------------------------------------------------

def test_criteria_cartesian_valid(criteria_schema):
    assert assert_pydantic_then_schema_ok(SearchCriteria, {"strategy": "Cartesian"}, criteria_schema) == {
        "strategy": "Cartesian"
    }


def test_criteria_random_valid_with_all_fields(criteria_schema):
    data = {
        "strategy": "RandomDiscrete",
        "max_models": 10,
        "max_runtime_secs": 3600,
        "seed": 42,
        "stopping_metric": "auc",
        "stopping_rounds": 3,
        "stopping_tolerance": 0.001,
    }
    assert_pydantic_then_schema_ok(SearchCriteria, data, criteria_schema)


def test_criteria_negative_bounds_rejected(criteria_schema):
    for field in ("max_models", "max_runtime_secs", "stopping_rounds", "stopping_tolerance"):
        bad = {"strategy": "RandomDiscrete", field: -1}
        assert_schema_invalid_but_pydantic_rejects(SearchCriteria, bad, criteria_schema)


def test_criteria_unknown_strategy_rejected(criteria_schema):
    assert_schema_invalid_but_pydantic_rejects(SearchCriteria, {"strategy": "Bayesian"}, criteria_schema)


def test_criteria_stopping_rounds_require_metric(criteria_schema):
    bad = {"strategy": "RandomDiscrete", "stopping_rounds": 2}
    assert_schema_invalid_but_pydantic_rejects(SearchCriteria, bad, criteria_schema)


def test_criteria_rejects_additional_properties(criteria_schema):
    bad = {"strategy": "Cartesian", "max_models": 3}
    assert_schema_invalid_but_pydantic_rejects(SearchCriteria, bad, criteria_schema)


# ---------------------------------------------------------------------------
# GridSearchRequest
# ---------------------------------------------------------------------------

def make_request(**overrides) -> dict[str, Any]:
    data: dict[str, Any] = {
        "parameters": {"seed": 42, "distribution": "bernoulli"},
        "hyper_parameters": {
            "ntrees": [10, 50],
            "max_depth": 5,
            "subspaces": [{"sample_rate": [0.5, 1.0]}],
        },
        "search_criteria": {"strategy": "RandomDiscrete", "max_models": 3, "seed": 1},
        "parallelism": 2,
        "recovery_dir": "/mnt/recovery/grid-1",
        "grid_id": "grid_1",
    }
    data.update(overrides)
    return data


def test_request_valid(request_schema):
    assert_pydantic_then_schema_ok(GridSearchRequest, make_request(), request_schema)


def test_request_normalized_by_from_raw_is_schema_valid(request_schema):
    request = GridSearchRequest.from_raw(make_request(hyper_parameters='{"ntrees": [10, 50]}'))
    jsonschema_validate(instance=dump_for_jsonschema(request), schema=request_schema, registry=SCHEMA_REGISTRY)


def test_request_negative_parallelism_rejected(request_schema):
    assert_schema_invalid_but_pydantic_rejects(GridSearchRequest, make_request(parallelism=-1), request_schema)


def test_request_empty_grid_id_rejected(request_schema):
    assert_schema_invalid_but_pydantic_rejects(GridSearchRequest, make_request(grid_id=""), request_schema)


def test_request_rejects_additional_properties(request_schema):
    data = make_request()
    data["unexpected"] = 1
    assert_schema_invalid_but_pydantic_rejects(GridSearchRequest, data, request_schema)


def test_request_space_shape_enforced_by_schema(request_schema):
    for space in ({}, {"ntrees": []}, {"ntrees": [[1]]}, {"a": [1], "subspaces": [[1]]}):
        with pytest.raises(JsonSchemaValidationError):
            jsonschema_validate(instance=make_request(hyper_parameters=space), schema=request_schema, registry=SCHEMA_REGISTRY)


# ---------------------------------------------------------------------------
# CheckpointRecord
# ---------------------------------------------------------------------------

POINT = ParameterPoint.from_mapping({"ntrees": 10, "learn_rate": 0.1, "balance_classes": True})


def test_checkpoint_dispatched_and_completed_valid(checkpoint_schema):
    cursor = WalkerCursor(strategy="RandomDiscrete", position=3, seed=7)

    dispatched = CheckpointRecord.dispatched(grid_id="grid_1", point=POINT, cursor=cursor)
    completed = CheckpointRecord.completed(
        grid_id="grid_1",
        point=POINT,
        cursor=cursor,
        outcome=ModelOutcome.success("model_1", {"auc": 0.91}, 1.5),
    )
    failed = CheckpointRecord.completed(
        grid_id="grid_1",
        point=POINT,
        cursor=cursor,
        outcome=ModelOutcome.failure(ValueError("bad"), 0.2),
    )

    for record in (dispatched, completed, failed):
        jsonschema_validate(instance=dump_for_jsonschema(record), schema=checkpoint_schema, registry=SCHEMA_REGISTRY)


def test_checkpoint_values_keep_their_kind():
    record = CheckpointRecord.dispatched(
        grid_id="grid_1",
        point=POINT,
        cursor=WalkerCursor(strategy="Cartesian", position=1),
    )

    restored = CheckpointRecord.model_validate_json(record.model_dump_json())

    assert restored.to_point() == POINT
    assert restored.point_hash == POINT.hash


def make_record(**overrides) -> dict[str, Any]:
    data: dict[str, Any] = {
        "schema_version": 1,
        "kind": "completed",
        "grid_id": "grid_1",
        "point_hash": POINT.hash,
        "point": POINT.as_dict(),
        "cursor": {"strategy": "Cartesian", "position": 1},
        "outcome": {"status": "success", "model_id": "model_1", "metrics": {}, "duration_seconds": 0.5},
        "recorded_at": "2024-01-01T00:00:00+00:00",
    }
    data.update(overrides)
    return data


def test_checkpoint_outcome_tied_to_kind(checkpoint_schema):
    assert_pydantic_then_schema_ok(CheckpointRecord, make_record(), checkpoint_schema)

    completed_without_outcome = make_record()
    completed_without_outcome.pop("outcome")
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, completed_without_outcome, checkpoint_schema)

    dispatched_with_outcome = make_record(kind="dispatched")
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, dispatched_with_outcome, checkpoint_schema)


def test_checkpoint_field_constraints(checkpoint_schema):
    bad_cursor = make_record(cursor={"strategy": "Cartesian", "position": -1})
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, bad_cursor, checkpoint_schema)

    bad_point = make_record(point={"ntrees": [10]})
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, bad_point, checkpoint_schema)

    bad_version = make_record(schema_version=2)
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, bad_version, checkpoint_schema)

    bad_grid = make_record(grid_id="")
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, bad_grid, checkpoint_schema)

    extra = make_record()
    extra["unexpected"] = 1
    assert_schema_invalid_but_pydantic_rejects(CheckpointRecord, extra, checkpoint_schema)


def test_checkpoint_log_written_by_a_job_conforms(tmp_path, make_builder, checkpoint_schema):
    rec = tmp_path / "rec"
    job = GridJob.from_raw(
        {"hyper_parameters": {"a": [1, 2.5, "x", False]}, "recovery_dir": str(rec), "parallelism": 2},
        make_builder(fail_when=lambda params: params["a"] == "x"),
    )
    job.start(wait=True)

    lines = (rec / CHECKPOINT_FILE).read_text(encoding="utf-8").splitlines()

    assert len(lines) == 8
    for line in lines:
        jsonschema_validate(instance=json.loads(line), schema=checkpoint_schema, registry=SCHEMA_REGISTRY)
