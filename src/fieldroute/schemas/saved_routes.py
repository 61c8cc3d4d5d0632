"""Saved route schemas used by the route plan stores."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .optimization import OptimizedRouteModel


class SavedRouteModel(BaseModel):
    id: str
    route_name: str
    saved_at: datetime
    share_token: Optional[str] = Field(default=None, description="Opaque token for read-only sharing.")
    route: OptimizedRouteModel
