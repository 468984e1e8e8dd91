from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    service_type: str
    title: str
    price: Decimal
    admin_override: bool = False


class ServiceCreate(BaseModel):
    title: str
    service_type: str
    price: Decimal
    user_id: str
    username: str
    include_in_total: bool = True
    admin_override: bool = False


class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    title: str
    service_type: Optional[str] = None
    price: Optional[Decimal] = None
    user_id: str
    username: str
    created_at: Optional[datetime] = None
    include_in_total: Optional[bool] = True
    admin_override: Optional[bool] = False


class ThemeIn(BaseModel):
    theme: Literal["light", "dark", "system"] = Field(default="system")
