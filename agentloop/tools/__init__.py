"""Tool definitions, schemas and the registry."""

from __future__ import annotations

from typing import Any, Callable, Type

from pydantic import BaseModel

from ..types import ToolDefinition, ToolSchema
from .registry import ToolRegistry
from .schema import DictSchema, PydanticSchema


def define_tool(
    name: str,
    description: str,
    parameters: Type[BaseModel] | dict[str, Any] | ToolSchema,
    execute: Callable[..., Any],
    *,
    requires_confirmation: bool = False,
) -> ToolDefinition:
    if isinstance(parameters, dict):
        schema: ToolSchema = DictSchema(parameters)
    elif isinstance(parameters, type) and issubclass(parameters, BaseModel):
        schema = PydanticSchema(parameters)
    else:
        schema = parameters
    return ToolDefinition(
        name=name,
        description=description,
        parameters=schema,
        execute=execute,
        requires_confirmation=requires_confirmation,
    )


__all__ = ["define_tool", "ToolRegistry", "PydanticSchema", "DictSchema"]
