from fastapi import APIRouter, Depends

from app.deps import require_permission
from app.models.permission import Permission
from app.schemas.permission import PermissionOut
from app.services.permissions import list_permissions

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("", response_model=list[PermissionOut])
def list_all_permissions(_=Depends(require_permission(Permission.permissions_read))):
    return [PermissionOut(code=code, description=description) for code, description in list_permissions()]
