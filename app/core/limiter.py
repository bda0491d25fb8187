from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def _identity_or_address(request) -> str:
    # Rate-limit per authenticated user when the gateway supplied one
    user_id = request.headers.get(settings.user_id_header)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=_identity_or_address)
