"""Base model configuration for all data structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model with standard configuration.

    Models are immutable and accept both field names and wire aliases.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)
