from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class StartCaptureRequest(BaseModel):
    user_id: int


class CaptureSessionResponse(BaseModel):
    session_id: str
    capture_url: str
    status: str
    created_at: datetime
    expires_at: datetime
    payload: Any = None


class SubmitCaptureResponse(BaseModel):
    accepted: bool
    result: str


class RenderTemplateRequest(BaseModel):
    template: str = Field(min_length=1)
    sample_data: Any = Field(default_factory=dict)


class RenderTemplateResponse(BaseModel):
    success: bool
    rendered: str = ""
    errors: list[str] | None = None

