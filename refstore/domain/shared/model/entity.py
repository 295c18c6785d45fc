from pydantic import BaseModel, ConfigDict


class Entity(BaseModel):
    """Identity-bearing domain object; fields may change over its lifetime."""

    model_config = ConfigDict(validate_assignment=True)
