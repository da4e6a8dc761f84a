from __future__ import annotations

import jsonschema

from lmchat.functions.base import FunctionDefinition


class ArgumentValidator:
    """Checks call arguments against a definition's schema, compiled once."""

    def __init__(self, definition: FunctionDefinition) -> None:
        schema = definition.to_json_schema()
        cls = jsonschema.validators.validator_for(schema)
        try:
            cls.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid schema for {definition.name}: {e.message}") from e
        self._validator = cls(schema)

    def validate(self, arguments: dict) -> tuple[bool, str | None]:
        error = jsonschema.exceptions.best_match(self._validator.iter_errors(arguments))
        if error is None:
            return True, None
        return False, str(error.message)
