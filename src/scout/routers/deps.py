"""Request helpers shared by the API routers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from ..auth import User
from ..context import ServiceContext


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def require_user(request: Request, ctx: ServiceContext) -> User:
    user = ctx.identity.authenticate(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
