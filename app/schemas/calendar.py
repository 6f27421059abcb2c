# app/schemas/calendar.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OAuthConfigRequest(BaseModel):
    """Admin input for a provider's OAuth application"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    client_id: str = Field(..., min_length=1)
    client_secret: Optional[str] = None
    redirect_uri: str = Field(..., min_length=1)
    scopes: Optional[str] = None
    is_enabled: bool = True
