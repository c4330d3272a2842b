"""Shared schema base classes"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response model read from ORM attributes and rendered with camelCase keys"""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
