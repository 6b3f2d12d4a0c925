"""
Base document model and identifier type.

Schemas are pydantic models. DocumentModel declares the `_id` field so
subclasses only list their own fields:

    class User(DocumentModel):
        name: str
        age: int
"""

from typing import Annotated, Any, Dict

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

# A stored document as returned by the driver
Document = Dict[str, Any]

ID_FIELD = "_id"


def _coerce_object_id(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return ObjectId(value)
        except InvalidId as e:
            raise ValueError(f"'{value}' is not a valid ObjectId") from e
    return value


# ObjectId, also accepting its 24-character hex string form
PyObjectId = Annotated[ObjectId, BeforeValidator(_coerce_object_id)]


def new_id() -> ObjectId:
    """Fresh identifier; ObjectIds are ordered by creation time."""
    return ObjectId()


class DocumentModel(BaseModel):
    """
    Base schema for stored documents.

    Dumped with by_alias=True, `id` is written as `_id`. Unknown input keys
    are dropped. createdAt/updatedAt are managed by the repository and need
    not be declared.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )

    id: PyObjectId = Field(alias=ID_FIELD)
