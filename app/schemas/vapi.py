# app/schemas/vapi.py
from typing import Any, Dict

from pydantic import BaseModel, Field


class VapiFunctionCall(BaseModel):
    """One tool call extracted from a voice-platform webhook"""
    tool_call_id: str = Field("default", description="Echoed back in the results envelope")
    name: str = Field(..., description="Function the assistant wants to run")
    parameters: Dict[str, Any] = Field(default_factory=dict)
