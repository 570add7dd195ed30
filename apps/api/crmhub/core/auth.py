from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from crmhub.core.config import get_settings
from crmhub.core.context import get_request_context


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "", 1).strip() if auth_header.startswith("Bearer ") else ""


def decode_token(token: str) -> AuthUser:
    settings = get_settings()
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if subject is None:
        raise JWTError("token has no subject")
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    return AuthUser(sub=str(subject), roles=[str(role) for role in roles])


def create_access_token(sub: str, roles: list[str] | None = None) -> str:
    settings = get_settings()
    claims = {"sub": sub, "roles": roles or ["user"]}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = decode_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    context = get_request_context(request)
    if context is not None:
        context.user_id = user.sub
    return user
