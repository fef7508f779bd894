"""User schemas."""
from pydantic import BaseModel, ConfigDict, EmailStr


class UserCreate(BaseModel):
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    is_active: bool = True


class UserRead(BaseModel):
    id: int
    email: EmailStr
    first_name: str | None
    last_name: str | None
    city: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
