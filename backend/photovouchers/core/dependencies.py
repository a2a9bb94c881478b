from fastapi import Header, HTTPException, status

from photovouchers.core.security import admin_token_matches


async def require_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    if not admin_token_matches(x_admin_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
