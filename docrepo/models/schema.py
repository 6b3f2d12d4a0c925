"""
Schema validator capability consumed by repositories.

A repository only needs ``parse(raw) -> dict`` that raises
docrepo ValidationError on rejection. PydanticSchema adapts a pydantic
model to that contract; any other validator can be plugged in by
implementing SchemaValidator.
"""

from typing import Any, Dict, Generic, Mapping, Protocol, Type, TypeVar, Union, runtime_checkable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from docrepo.core.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@runtime_checkable
class SchemaValidator(Protocol):
    """Validates raw input into a storable document."""

    def parse(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        ...


class PydanticSchema(Generic[ModelT]):
    """
    SchemaValidator backed by a pydantic model.

    Attributes:
        model: The pydantic model class
    """

    def __init__(self, model: Type[ModelT]):
        self.model = model

    def validate(self, data: Mapping[str, Any]) -> ModelT:
        """Validate into a model instance."""
        try:
            return self.model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"{self.model.__name__} validation failed: {e.error_count()} error(s)",
                errors=e.errors(include_url=False),
            ) from e

    def parse(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.validate(data).model_dump(by_alias=True)

    def __repr__(self) -> str:
        return f"PydanticSchema({self.model.__name__})"


def as_schema(schema: Union[SchemaValidator, Type[BaseModel]]) -> SchemaValidator:
    """
    Coerce a pydantic model class or validator into a SchemaValidator.

    Raises:
        TypeError: If schema is neither
    """
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return PydanticSchema(schema)
    if isinstance(schema, SchemaValidator):
        return schema
    raise TypeError(
        f"schema must be a pydantic model class or define parse(), got {type(schema).__name__}"
    )


def to_mapping(data: Union[Mapping[str, Any], BaseModel]) -> Dict[str, Any]:
    """Plain dict from caller input (pydantic instances dumped by alias, set fields only)."""
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_unset=True)
    return dict(data)
