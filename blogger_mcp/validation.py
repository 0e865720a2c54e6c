"""Validation helpers for registered operations and their inputs."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlsplit

from jsonschema import exceptions as jsonschema_exceptions, validators as jsonschema_validators

from .errors import VALIDATION_ERROR, BloggerMcpError
from .models import PromptArgument

__all__ = [
    "NAME_PATTERN",
    "check_input_schema",
    "compile_uri_template",
    "match_uri_template",
    "validate_input",
    "validate_name",
    "validate_prompt_arguments",
    "validate_uri_or_template",
]

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_TEMPLATE_PARAM = re.compile(r"\{([^{}]*)\}")
_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_PRIMITIVE_CHECKS = {
    "string": lambda value: isinstance(value, str),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "boolean": lambda value: isinstance(value, bool),
    "array": lambda value: isinstance(value, (list, tuple)),
}

_template_cache: dict[str, re.Pattern[str]] = {}


def validate_name(kind: str, name: Any) -> str:
    if name is None:
        raise BloggerMcpError(VALIDATION_ERROR, "Required field 'name' is missing", details={"fields": ["name"]})
    if not isinstance(name, str) or not name:
        raise BloggerMcpError(VALIDATION_ERROR, "Field 'name' must be a non-empty string", details={"fields": ["name"]})
    if not NAME_PATTERN.match(name):
        raise BloggerMcpError(
            VALIDATION_ERROR,
            f"{kind.capitalize()} name must contain only alphanumeric characters, underscores, and hyphens",
            details={"fields": ["name"], "name": name},
        )
    return name


def check_input_schema(schema: Any) -> dict[str, Any]:
    """Ensure ``schema`` is a usable JSON Schema describing an object payload."""

    if not isinstance(schema, Mapping):
        raise BloggerMcpError(VALIDATION_ERROR, "inputSchema must be a JSON object", details={"fields": ["inputSchema"]})
    schema_dict = dict(schema)
    declared_type = schema_dict.get("type", "object")
    if declared_type != "object":
        raise BloggerMcpError(
            VALIDATION_ERROR,
            "inputSchema must describe an object",
            details={"fields": ["inputSchema"]},
        )
    try:
        validator_cls = jsonschema_validators.validator_for(schema_dict)
        validator_cls.check_schema(schema_dict)
    except jsonschema_exceptions.SchemaError as exc:
        raise BloggerMcpError(
            VALIDATION_ERROR,
            f"Invalid inputSchema: {exc.message}",
            details={"fields": ["inputSchema"]},
        ) from exc
    return schema_dict


def validate_input(schema: Mapping[str, Any], payload: Any) -> dict[str, Any]:
    """Validate ``payload`` against ``schema``; all violations are reported at once."""

    data = {} if payload is None else payload
    if not isinstance(data, Mapping):
        raise BloggerMcpError(VALIDATION_ERROR, "Arguments must be an object", details={"fields": ["$"]})
    validator_cls = jsonschema_validators.validator_for(schema)
    validator = validator_cls(schema)
    errors = sorted(validator.iter_errors(data), key=lambda error: [str(part) for part in error.absolute_path])
    if not errors:
        return dict(data)

    fields: list[str] = []
    messages: list[str] = []
    for error in errors:
        location = _error_location(error)
        if location not in fields:
            fields.append(location)
        messages.append(f"{error.message} at {location}" if location != "$" else error.message)
    raise BloggerMcpError(
        VALIDATION_ERROR,
        "Validation failed: " + ", ".join(messages),
        details={"fields": fields},
    )


def _error_location(error: jsonschema_exceptions.ValidationError) -> str:
    path = [str(part) for part in error.absolute_path]
    if error.validator == "required" and isinstance(error.instance, Mapping):
        # the missing property is named in the message, not the path
        missing = [name for name in error.validator_value if name not in error.instance]
        if missing:
            path.append(str(missing[0]))
    return ".".join(path) if path else "$"


def validate_prompt_arguments(arguments: Sequence[PromptArgument], payload: Any) -> dict[str, Any]:
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise BloggerMcpError(VALIDATION_ERROR, "Prompt parameters must be an object")

    for argument in arguments:
        if argument.required and argument.name not in payload:
            raise BloggerMcpError(
                VALIDATION_ERROR,
                f"Required argument '{argument.name}' is missing",
                details={"fields": [argument.name]},
            )
        if argument.name in payload and argument.type:
            check = _PRIMITIVE_CHECKS.get(argument.type)
            if check is not None and not check(payload[argument.name]):
                raise BloggerMcpError(
                    VALIDATION_ERROR,
                    f"Argument '{argument.name}' must be a {argument.type}",
                    details={"fields": [argument.name]},
                )
    return dict(payload)


def validate_uri_or_template(uri: Any) -> str:
    if not isinstance(uri, str) or not uri:
        raise BloggerMcpError(VALIDATION_ERROR, "Field 'uri' must be a non-empty string", details={"fields": ["uri"]})

    if "{" in uri or "}" in uri or "*" in uri:
        if uri.count("{") != uri.count("}"):
            raise BloggerMcpError(VALIDATION_ERROR, "Resource URI template has unbalanced braces", details={"fields": ["uri"]})
        names = _TEMPLATE_PARAM.findall(uri)
        if len(set(names)) != len(names):
            raise BloggerMcpError(VALIDATION_ERROR, "Resource URI template repeats a parameter name", details={"fields": ["uri"]})
        for name in names:
            if not _PARAM_NAME.match(name):
                raise BloggerMcpError(
                    VALIDATION_ERROR,
                    f"Resource URI template parameter '{name}' is not a valid identifier",
                    details={"fields": ["uri"]},
                )
        return uri

    parts = urlsplit(uri)
    if not parts.scheme or not (parts.netloc or parts.path):
        raise BloggerMcpError(VALIDATION_ERROR, "Resource URI must be a valid URL or pattern", details={"fields": ["uri"]})
    return uri


def compile_uri_template(pattern: str) -> re.Pattern[str]:
    """Translate ``{param}`` to a non-slash capture group and ``*`` to a wildcard."""

    cached = _template_cache.get(pattern)
    if cached is not None:
        return cached

    pieces: list[str] = []
    position = 0
    for match in re.finditer(r"\{([^{}]+)\}|\*", pattern):
        pieces.append(re.escape(pattern[position : match.start()]))
        if match.group(0) == "*":
            pieces.append(".*")
        else:
            pieces.append(f"(?P<{match.group(1)}>[^/]+)")
        position = match.end()
    pieces.append(re.escape(pattern[position:]))
    compiled = re.compile("^" + "".join(pieces) + "$")
    _template_cache[pattern] = compiled
    return compiled


def match_uri_template(pattern: str, uri: str) -> dict[str, str] | None:
    if "{" not in pattern and "*" not in pattern:
        return {} if uri == pattern else None
    match = compile_uri_template(pattern).match(uri)
    if match is None:
        return None
    return dict(match.groupdict())
