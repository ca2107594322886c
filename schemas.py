from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelIn(BaseModel):
    """Request body accepting the mobile/dashboard camelCase keys (phoneNumber, fcmToken, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
