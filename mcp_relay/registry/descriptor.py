"""
Parameter Descriptor Translation

Registrations describe their arguments with a small JSON descriptor map.
This module turns that map into a pydantic model used to validate call
arguments and to publish an input schema.

Grammar (closed; anything else raises DescriptorError):
    "string" | "number" | "boolean"
    {"type": "string" | "number" | "boolean", "optional"?: bool}
    {"type": "array", "items": <descriptor>, "optional"?: bool}
    {"type": "object", "properties": {<name>: <descriptor>}, "optional"?: bool}

Example:
    {"city": "string", "days": {"type": "number", "optional": true}}
"""

from typing import Any, Union

from pydantic import BaseModel, StrictBool, StrictFloat, StrictInt, StrictStr, create_model

from mcp_relay.registry.ports import DescriptorError

_PRIMITIVES: dict[str, Any] = {
    "string": StrictStr,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
}


def _field_type(descriptor: Any, path: str) -> tuple[Any, bool]:
    """Return (python type, optional) for one descriptor."""
    if isinstance(descriptor, str):
        if descriptor not in _PRIMITIVES:
            raise DescriptorError(f"Unsupported primitive type at {path}: {descriptor!r}")
        return _PRIMITIVES[descriptor], False

    if not isinstance(descriptor, dict):
        raise DescriptorError(f"Unsupported descriptor at {path}: {descriptor!r}")

    kind = descriptor.get("type")
    optional = bool(descriptor.get("optional", False))

    if kind in _PRIMITIVES:
        return _PRIMITIVES[kind], optional

    if kind == "array":
        if "items" not in descriptor:
            raise DescriptorError(f"Array descriptor at {path} has no items")
        item_type, _ = _field_type(descriptor["items"], f"{path}[]")
        return list[item_type], optional

    if kind == "object":
        properties = descriptor.get("properties")
        if not isinstance(properties, dict):
            raise DescriptorError(f"Object descriptor at {path} has no properties")
        return _build_model(properties, path), optional

    raise DescriptorError(f"Unsupported type object at {path}: {descriptor!r}")


def _build_model(descriptors: dict[str, Any], path: str) -> type[BaseModel]:
    fields: dict[str, Any] = {}
    for name, descriptor in descriptors.items():
        field_type, optional = _field_type(descriptor, f"{path}.{name}")
        if optional:
            fields[name] = (field_type | None, None)
        else:
            fields[name] = (field_type, ...)
    model_name = "".join(part.capitalize() for part in path.replace("[]", "Item").split(".") if part)
    return create_model(model_name or "Arguments", **fields)


def model_from_descriptor(descriptors: Any, name: str = "Arguments") -> type[BaseModel]:
    """
    Translate a descriptor map into a pydantic model.

    Args:
        descriptors: Mapping of argument name to descriptor
        name: Model name (also the root of nested model names)

    Returns:
        A model class whose fields mirror the descriptors

    Raises:
        DescriptorError: If any descriptor is outside the grammar
    """
    if not isinstance(descriptors, dict):
        raise DescriptorError(f"Parameters must be an object, got {type(descriptors).__name__}")
    return _build_model(descriptors, name)


def validate_arguments(model: type[BaseModel], arguments: dict[str, Any] | None) -> dict[str, Any]:
    """
    Validate call arguments, returning only the fields the caller supplied.

    Raises:
        pydantic.ValidationError: If the arguments do not match
    """
    return model.model_validate(arguments or {}).model_dump(exclude_unset=True)
