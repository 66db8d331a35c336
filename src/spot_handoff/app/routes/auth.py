"""Caller identity for the API: Bearer token -> user id."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from spot_handoff.services.auth_service import decode_token

router = APIRouter(prefix="/api/auth", tags=["auth"])


def caller_id_from_token(token: str) -> str | None:
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        return None
    return str(payload["sub"])


async def get_caller_id(request: Request) -> str:
    """Dependency: extract the caller's user id from the Bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token",
        )
    caller_id = caller_id_from_token(auth_header.removeprefix("Bearer "))
    if caller_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return caller_id


@router.get("/me")
async def me(caller_id: str = Depends(get_caller_id)):
    """Echo the identity the server resolved from the token."""
    return {"user_id": caller_id}
