from typing import Protocol, runtime_checkable
from pydantic import BaseModel

class Profile(BaseModel):
    user_id: str
    display_name: str
    email: str = ""
    role: str

@runtime_checkable
class ProfileDirectoryPort(Protocol):
    async def get_profile(self, user_id: str) -> Profile | None: ...
    async def find_by_email(self, email: str) -> Profile | None: ...
