from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Actor(BaseModel):
    """Who is performing a mutating call, as supplied by the host application."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=64)
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
