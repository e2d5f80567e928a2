from pydantic import BaseModel


class PermissionsResponse(BaseModel):
    user_id: str
    role: str | None
    level: int
    is_admin: bool
    is_owner: bool


class AdminOverviewResponse(BaseModel):
    user_id: str
    role: str | None
