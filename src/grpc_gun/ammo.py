"""Ammo: one unit of load-test input for the universal gRPC gun."""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Ammo(BaseModel):
    """
    A single request description.

    ``call`` is the fully-qualified method name as produced by discovery
    (``package.Service.Method``); ``payload`` is a JSON object that must
    structurally match the method's input message.
    """

    model_config = ConfigDict(frozen=True)

    tag: str = ""
    call: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", "payload", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Optional[Any]) -> Any:
        return {} if value is None else value

    @classmethod
    def from_json(cls, document: Union[str, bytes]) -> "Ammo":
        """Decode one JSON ammo document. Raises pydantic.ValidationError."""
        return cls.model_validate_json(document)
