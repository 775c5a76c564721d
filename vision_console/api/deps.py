from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from vision_console.domain.permissions import has_permission
from vision_console.infra.auth import decode_access_token
from vision_console.infra.request_context import set_client_context, set_operator_context

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login")


# Async so the context vars it sets stay visible to the sync endpoint that follows.
async def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    set_operator_context(claims.get("sub"))
    return claims


async def bind_client(request: Request, client_id: str) -> str:
    request.state.client_id = client_id
    set_client_context(client_id)
    return client_id


def require_perm(permission: str) -> Callable[[dict[str, Any]], Any]:
    async def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_permission(claims, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return claims

    return _checker


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
ClientId = Annotated[str, Depends(bind_client)]
