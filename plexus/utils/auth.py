from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, Response

from ..models.schemas import OperationClass
from ..services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail={"error_code": "AUTH_REQUIRED", "message": "Missing or invalid authorization header"})
    token = authorization[len("Bearer "):].strip()
    user_id = services.store.resolve_session_token(token)
    if not user_id:
        raise HTTPException(status_code=401, detail={"error_code": "AUTH_INVALID", "message": "Invalid or expired session"})
    return user_id


def throttled(operation: OperationClass):
    """Dependency that admits the caller under ``operation``'s window or rejects with 429."""

    async def dependency(
        response: Response,
        user_id: str = Depends(get_current_user_id),
        services: Services = Depends(get_services),
    ) -> str:
        decision = await services.throttle.check(user_id, operation)
        limit = services.throttle.limits[operation]
        response.headers["X-RateLimit-Limit"] = str(limit.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        if not decision.allowed:
            retry_after = decision.retry_after(services.throttle.clock())
            raise HTTPException(
                status_code=429,
                detail={
                    "error_code": "RATE_LIMIT",
                    "message": f"Too many requests. Please try again in {retry_after} seconds.",
                },
                headers={"Retry-After": str(retry_after)},
            )
        return user_id

    return dependency
