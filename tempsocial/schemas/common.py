"""Shared schema base: snake_case attributes, camelCase on the wire"""

from uuid import UUID

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class UserBrief(CamelModel):
    id: UUID
    username: str
    profile_picture: str | None = None


class MessageOut(CamelModel):
    """Plain acknowledgement body"""
    message: str
