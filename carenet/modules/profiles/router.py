from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.db import get_session
from carenet.core.security import get_principal, Principal
from carenet.modules.profiles.service import ProfileDirectory
from carenet.platform.ports.profiles import Profile

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> ProfileDirectory:
    return ProfileDirectory(session)

@router.get("/profiles/lookup", response_model=Profile)
async def lookup_profile(
    email: str,
    principal: Principal = Depends(get_principal),
    directory: ProfileDirectory = Depends(svc),
):
    profile = await directory.find_by_email(email)
    if not profile or profile.user_id == principal.user_id:
        raise HTTPException(status_code=404, detail="User not found")
    return profile
