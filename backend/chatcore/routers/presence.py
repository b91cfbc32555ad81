from fastapi import APIRouter, Depends

from chatcore.container import Container
from chatcore.utils.dependencies import get_container, get_current_user


router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/{user_id}")
async def presence(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Basic online/offline signal; no per-device detail."""
    online = await container.presence.is_online(user_id)
    return {"userId": user_id, "online": online}
