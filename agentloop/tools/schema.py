"""Tool parameter schemas backed by pydantic models or raw JSON Schema dicts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


class PydanticSchema:
    """Arguments validated into an instance of a pydantic model."""

    def __init__(self, model: type[BaseModel]) -> None:
        self._model = model
        self._json_schema: dict | None = None

    @property
    def model(self) -> type[BaseModel]:
        return self._model

    def parse(self, raw: Any) -> BaseModel:
        if isinstance(raw, (str, bytes)):
            return self._model.model_validate_json(raw)
        return self._model.model_validate(raw or {})

    def to_json_schema(self) -> dict:
        if self._json_schema is None:
            schema = self._model.model_json_schema()
            # The tool name already identifies the schema.
            schema.pop("title", None)
            self._json_schema = schema
        return self._json_schema


class DictSchema:
    """Arguments checked against a JSON Schema dict and returned as a dict.

    Only the top level is checked: required keys, the primitive ``type`` of
    each declared property, and ``default`` values for absent properties.
    """

    def __init__(self, schema: dict[str, Any]) -> None:
        self._schema = schema

    def parse(self, raw: Any) -> dict[str, Any]:
        args = dict(raw) if isinstance(raw, dict) else {}
        properties: dict[str, Any] = self._schema.get("properties", {})

        missing = [k for k in self._schema.get("required", []) if k not in args]
        if missing:
            raise ValueError(f"Missing required argument(s): {', '.join(missing)}")

        problems = []
        for name, prop in properties.items():
            if name not in args:
                if "default" in prop:
                    args[name] = prop["default"]
                continue
            expected = _JSON_TYPES.get(prop.get("type", ""))
            value = args[name]
            if expected is None:
                continue
            # bool is an int subclass but not a JSON number
            if isinstance(value, bool) and bool not in expected:
                problems.append(f"{name} must be {prop['type']}")
            elif not isinstance(value, expected):
                problems.append(f"{name} must be {prop['type']}")
        if problems:
            raise ValueError("; ".join(problems))
        return args

    def to_json_schema(self) -> dict:
        return self._schema
