"""Bearer-token dependency resolving the requesting viewer."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    if not credentials:
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")
    try:
        return AuthContext(user_id=decode_session_token(credentials.credentials))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
