"""Payload checks applied to snapshots before models are rebuilt from them."""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Real
from typing import Any, ClassVar, Mapping


class ModelValidationError(ValueError):
    """Raised when a stored payload cannot be turned into a model."""

    def __init__(self, model: type[Any], errors: list[str]) -> None:
        self.model = model
        self.errors = list(errors)
        message = "; ".join(self.errors) if self.errors else "invalid payload"
        super().__init__(f"{model.__name__} payload rejected: {message}")


@dataclass(frozen=True)
class FieldSpec:
    expected: Any
    description: str
    required: bool = True
    allow_none: bool = False


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _matches(value: Any, expected: Any) -> bool:
    if expected is Any:
        return True
    if isinstance(expected, tuple):
        return any(_matches(value, option) for option in expected)
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if expected is float:
        return isinstance(value, Real) and not isinstance(value, bool)
    if isinstance(expected, type):
        return isinstance(value, expected)
    if callable(expected):
        try:
            return bool(expected(value))
        except (TypeError, ValueError):
            return False
    return True


class ModelValidator:
    """Declarative field checks; subclasses set ``model`` and ``fields``."""

    model: ClassVar[type[Any]]
    fields: ClassVar[Mapping[str, FieldSpec]]

    @classmethod
    def validate(cls, data: Any) -> dict[str, Any]:
        if not isinstance(data, Mapping):
            raise ModelValidationError(cls.model, ["payload must be a mapping"])

        errors: list[str] = []
        for name, spec in cls.fields.items():
            if name not in data:
                if spec.required:
                    errors.append(f"missing '{name}' ({spec.description})")
                continue
            value = data[name]
            if value is None:
                if not spec.allow_none:
                    errors.append(f"'{name}' cannot be null")
                continue
            if not _matches(value, spec.expected):
                errors.append(
                    f"'{name}' expected {spec.description}, got {type(value).__name__}"
                )

        if errors:
            raise ModelValidationError(cls.model, errors)
        return dict(data)


__all__ = [
    "FieldSpec",
    "ModelValidationError",
    "ModelValidator",
    "is_non_empty_str",
    "is_non_negative_int",
]
