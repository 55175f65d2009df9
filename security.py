import secrets

from fastapi import HTTPException, Request, status

import config


def _provided_key(request: Request) -> str:
    provided = request.headers.get("x-api-key") or request.headers.get("authorization") or ""
    return provided.replace("Bearer", "").strip()


def require_admin_key(request: Request) -> None:
    """Guard threat database writes; open when ADMIN_API_KEY is unset."""
    if not config.ADMIN_API_KEY:
        return  # auth disabled
    token = _provided_key(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing api key")
    if not secrets.compare_digest(token, config.ADMIN_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")
