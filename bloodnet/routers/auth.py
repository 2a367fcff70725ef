from fastapi import APIRouter, Depends

from ..middleware import permitted_operations
from ..models import Capabilities, RequestContext
from ..services import get_current_user

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.get("/me")
async def get_me(current_user: RequestContext = Depends(get_current_user)):
    return current_user.model_dump(by_alias=True, mode="json")

@router.get("/capabilities")
async def get_capabilities(current_user: RequestContext = Depends(get_current_user)):
    capabilities = Capabilities(
        role=current_user.role,
        approval_status=current_user.approval_status,
        operations=[op.value for op in permitted_operations(current_user)],
    )
    return capabilities.model_dump(by_alias=True, mode="json")

@router.post("/check-token")
async def check_token(current_user: RequestContext = Depends(get_current_user)):
    return {"valid": True, "user": current_user.model_dump(by_alias=True, mode="json")}

@router.get("/profile-status")
async def get_profile_status(current_user: RequestContext = Depends(get_current_user)):
    return {
        "role": current_user.role.value,
        "approvalStatus": current_user.approval_status.value,
        "profileComplete": current_user.profile_complete,
    }
