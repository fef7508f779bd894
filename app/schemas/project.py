"""Project listing schemas."""
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    title: str = Field(min_length=3, max_length=255)
    description: str | None = None
    price: Decimal = Field(gt=Decimal("0"), max_digits=18, decimal_places=2)
    currency: Literal["TRY"] = "TRY"


class ProjectRead(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str | None
    price: Decimal
    currency: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
