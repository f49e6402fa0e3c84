"""Stream events decoded from the assistant response body."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MetadataEvent(BaseModel):
    """Model identity announced by the backend before the first token."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    type: Literal["metadata"] = "metadata"
    model: str | None = Field(default=None, description="Model id")
    model_name: str | None = Field(
        default=None, alias="modelName", description="Display name of the model"
    )
    cached: bool = Field(
        default=False, description="Whether the answer is served from cache"
    )


class ContentEvent(BaseModel):
    """A fragment of the assistant's answer."""

    type: Literal["content"] = "content"
    content: str = Field(description="Text token content")


class ErrorEvent(BaseModel):
    """Stream-level error reported by the backend."""

    type: Literal["error"] = "error"
    message: str = Field(description="Error message")


class DoneEvent(BaseModel):
    """The ``[DONE]`` sentinel."""

    type: Literal["done"] = "done"


StreamEvent = MetadataEvent | ContentEvent | ErrorEvent | DoneEvent
