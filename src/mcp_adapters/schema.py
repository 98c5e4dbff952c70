"""JSON Schema generation from Python signatures and argument validation."""

import inspect
import types
from typing import Any, Callable, Dict, List, Literal, Optional, Union, get_args, get_origin

# `X | Y` annotations (Python 3.10+) have their own origin type
_UNION_ORIGINS = tuple(t for t in (Union, getattr(types, "UnionType", None)) if t is not None)


def python_type_to_json_schema(python_type: Any) -> Dict[str, Any]:
    """Convert a Python type to JSON Schema.

    Args:
        python_type: Python type to convert

    Returns:
        JSON Schema representation
    """
    if python_type is type(None):
        return {"type": "null"}

    if python_type is str:
        return {"type": "string"}
    elif python_type is bool:
        return {"type": "boolean"}
    elif python_type is int:
        return {"type": "integer"}
    elif python_type is float:
        return {"type": "number"}
    elif python_type is list:
        return {"type": "array"}
    elif python_type is dict:
        return {"type": "object"}

    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is Literal:
        return {"enum": list(args)}

    if origin in _UNION_ORIGINS:
        if type(None) in args:
            non_none_args = [arg for arg in args if arg is not type(None)]
            if len(non_none_args) == 1:
                schema = python_type_to_json_schema(non_none_args[0])
                if "type" in schema:
                    if isinstance(schema["type"], list):
                        schema["type"].append("null")
                    else:
                        schema["type"] = [schema["type"], "null"]
                    return schema
                return {"oneOf": [schema, {"type": "null"}]}
        return {"oneOf": [python_type_to_json_schema(arg) for arg in args]}

    if origin is list:
        if args:
            return {"type": "array", "items": python_type_to_json_schema(args[0])}
        return {"type": "array"}

    if origin is dict:
        if len(args) >= 2:
            return {"type": "object", "additionalProperties": python_type_to_json_schema(args[1])}
        return {"type": "object"}

    # Any and unknown types accept anything
    return {}


def generate_function_input_schema(func: Callable) -> Dict[str, Any]:
    """Generate JSON Schema for function input parameters.

    Parameters without a default are required. Unknown argument names are
    rejected unless the function takes ``**kwargs``.

    Args:
        func: Function to analyze

    Returns:
        JSON Schema for function parameters
    """
    sig = inspect.signature(func)
    properties = {}
    required = []
    accepts_extra = False

    for param_name, param in sig.parameters.items():
        if param_name == "self" or param.kind is inspect.Parameter.VAR_POSITIONAL:
            continue
        if param.kind is inspect.Parameter.VAR_KEYWORD:
            accepts_extra = True
            continue

        param_type = param.annotation if param.annotation is not inspect.Parameter.empty else Any
        properties[param_name] = python_type_to_json_schema(param_type)

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    schema: Dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }
    if required:
        schema["required"] = required
    if not accepts_extra:
        schema["additionalProperties"] = False
    return schema


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


def _matches_type(value: Any, expected: Union[str, List[str]]) -> bool:
    if isinstance(expected, list):
        return any(_matches_type(value, t) for t in expected)
    check = _TYPE_CHECKS.get(expected)
    return True if check is None else check(value)


def _join(path: str, key: Union[str, int]) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def _error(path: str, message: str) -> Dict[str, str]:
    return {"field": path or "$", "message": message}


def validate_against_schema(value: Any, schema: Dict[str, Any], path: str = "") -> List[Dict[str, str]]:
    """Validate a value against a JSON Schema.

    Every violation is reported, not only the first one.

    Args:
        value: Value to validate
        schema: JSON Schema to validate against
        path: Location of ``value`` inside the top-level arguments

    Returns:
        List of ``{"field", "message"}`` dicts, empty when valid
    """
    if not schema:
        return []

    if "type" in schema and not _matches_type(value, schema["type"]):
        expected = schema["type"]
        if isinstance(expected, list):
            return [_error(path, f"expected one of the types {expected}")]
        return [_error(path, f"expected type {expected}")]

    errors: List[Dict[str, str]] = []

    if "const" in schema and value != schema["const"]:
        errors.append(_error(path, f"must be {schema['const']!r}"))

    if "enum" in schema and value not in schema["enum"]:
        errors.append(_error(path, f"must be one of {schema['enum']}"))

    for keyword in ("oneOf", "anyOf"):
        if keyword in schema:
            if not any(not validate_against_schema(value, sub) for sub in schema[keyword]):
                errors.append(_error(path, f"does not match any allowed schema ({keyword})"))

    if isinstance(value, str):
        if "minLength" in schema and len(value) < schema["minLength"]:
            errors.append(_error(path, f"must be at least {schema['minLength']} characters"))
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            errors.append(_error(path, f"must be at most {schema['maxLength']} characters"))

    if _TYPE_CHECKS["number"](value):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(_error(path, f"must be >= {schema['minimum']}"))
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(_error(path, f"must be <= {schema['maximum']}"))

    if isinstance(value, list):
        if "minItems" in schema and len(value) < schema["minItems"]:
            errors.append(_error(path, f"must contain at least {schema['minItems']} items"))
        if "maxItems" in schema and len(value) > schema["maxItems"]:
            errors.append(_error(path, f"must contain at most {schema['maxItems']} items"))
        if isinstance(schema.get("items"), dict):
            for i, item in enumerate(value):
                errors.extend(validate_against_schema(item, schema["items"], _join(path, i)))

    if isinstance(value, dict):
        properties = schema.get("properties", {})
        for required_prop in schema.get("required", []):
            if required_prop not in value:
                errors.append(_error(_join(path, required_prop), "is required"))

        additional = schema.get("additionalProperties", True)
        for prop_name, prop_value in value.items():
            prop_path = _join(path, prop_name)
            if prop_name in properties:
                errors.extend(validate_against_schema(prop_value, properties[prop_name], prop_path))
            elif additional is False:
                errors.append(_error(prop_path, "is not an accepted argument"))
            elif isinstance(additional, dict):
                errors.extend(validate_against_schema(prop_value, additional, prop_path))

    return errors


def is_valid_schema(schema: Optional[Dict[str, Any]]) -> bool:
    """Whether ``schema`` can describe capability arguments."""
    if not isinstance(schema, dict):
        return False
    return schema.get("type", "object") == "object"
