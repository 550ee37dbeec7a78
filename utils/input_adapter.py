import re
from dataclasses import fields
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from engine.errors import SimulationConfigError
from models import (
    AssetBuckets,
    ExpenseSchedule,
    GuardrailConfig,
    IncomeStreams,
    LTCInsurancePolicy,
    PersonParams,
    SimulationParams,
)

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    """currentAge -> current_age; snake_case keys pass through."""
    return _CAMEL.sub("_", key).lower()


def _build(cls, data: Any, path: str, converters: Optional[Dict[str, Callable]] = None):
    """
    Builds dataclass `cls` from a mapping, using reflection (dataclasses.fields)
    to decide which keys are valid. Unknown keys are an error, and values are
    passed through untouched so the dataclass validators see the raw types.
    """
    if not isinstance(data, Mapping):
        raise SimulationConfigError(f"{path} must be an object, got {type(data).__name__}")

    field_names = {f.name for f in fields(cls) if f.init}
    converters = converters or {}
    kwargs = {}
    for key, value in data.items():
        name = _snake(key)
        if name not in field_names:
            raise SimulationConfigError(f"unknown field {path}.{key}")
        if name in converters and value is not None:
            value = converters[name](value, f"{path}.{name}")
        kwargs[name] = value

    try:
        return cls(**kwargs)
    except TypeError as exc:
        # missing required fields
        raise SimulationConfigError(f"{path}: {exc}") from exc


# ----------------------------------------------------------------------
# Field converters
# ----------------------------------------------------------------------

def _person(data, path) -> PersonParams:
    return _build(PersonParams, data, path, {
        "income": lambda v, p: _build(IncomeStreams, v, p),
        "ltc_insurance": lambda v, p: _build(LTCInsurancePolicy, v, p),
    })


def _persons(value, path):
    if not isinstance(value, (list, tuple)):
        raise SimulationConfigError(f"{path} must be a list of people")
    return tuple(_person(item, f"{path}[{i}]") for i, item in enumerate(value))


def _asset_classes(value, path):
    if not isinstance(value, Mapping):
        raise SimulationConfigError(f"{path} must map asset class -> (expected_return, volatility)")
    classes = {}
    for name, entry in value.items():
        if isinstance(entry, Mapping):
            entry = (entry.get("expected_return", entry.get("expectedReturn")), entry.get("volatility"))
        if not isinstance(entry, (list, tuple)):
            raise SimulationConfigError(f"{path}.{name} must be (expected_return, volatility)")
        classes[name] = tuple(entry)
    return classes


def _matrix(value, path):
    if not isinstance(value, (list, tuple)) or not all(isinstance(row, (list, tuple)) for row in value):
        raise SimulationConfigError(f"{path} must be a list of rows")
    return tuple(tuple(row) for row in value)


def _mapping(value, path):
    if not isinstance(value, Mapping):
        raise SimulationConfigError(f"{path} must be an object")
    return dict(value)


def _expenses(value, path):
    return _build(ExpenseSchedule, value, path, {"one_time": _matrix})


def _as_of(value, path):
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise SimulationConfigError(f"{path} must be an ISO date string, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise SimulationConfigError(f"{path} must be an ISO date string, got {value!r}") from exc


def _pair(value, path):
    if not isinstance(value, (list, tuple)):
        raise SimulationConfigError(f"{path} must be a two-item list")
    return tuple(value)


PARAM_CONVERTERS = {
    "persons": _persons,
    "buckets": lambda v, p: _build(AssetBuckets, v, p),
    "expenses": _expenses,
    "asset_classes": _asset_classes,
    "correlation": _matrix,
    "allocation": _mapping,
    "annual_contributions": _mapping,
    "guardrails": lambda v, p: _build(GuardrailConfig, v, p),
    "as_of": _as_of,
    "magi_history": _pair,
}


def params_from_dict(data: Mapping[str, Any]) -> SimulationParams:
    """
    Turns a plain (e.g. JSON-decoded) dict into SimulationParams.

    Keys may be snake_case or camelCase. Numbers must already be numbers:
    "140000" or "$140,000" raise SimulationConfigError instead of being
    coerced.
    """
    return _build(SimulationParams, data, "params", PARAM_CONVERTERS)
