"""
End-user authentication.
Resolves the Supabase session behind a bearer token to its user id.
"""

import asyncio
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def resolve_user_id(client: Client, token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    try:
        response = await asyncio.to_thread(client.auth.get_user, token)
    except Exception as e:
        logger.info(f"🔒 Rejected session token: {e}")
        return None
    user = getattr(response, "user", None)
    return getattr(user, "id", None)


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    token = credentials.credentials if credentials else None
    user_id = await resolve_user_id(request.app.state.services.supabase, token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
