"""
cohort_config.tier1_runtime.validate
─────────────────────────────────────
Schema validation via Pydantic v2. Raises the package's ValidationError
(not raw Pydantic errors) so callers handle one error taxonomy.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

T = TypeVar("T", bound=BaseModel)


def validate_input(model: Type[T], data: Any, *, context: str | None = None) -> T:
    """
    Validate raw data against a Pydantic model.
    Raises cohort_config ValidationError (not Pydantic's) on failure.

    Usage:
        spec = validate_input(KeyDefinitionInput, {"scope": "player", "default_value": 1})
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        from cohort_config.tier0_core.errors import ValidationError

        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        message = f"Invalid {context}." if context else "Validation failed."
        raise ValidationError(
            code="validation_error",
            user_message=message,
            fields=fields,
        ) from exc


__all__ = ["validate_input"]
