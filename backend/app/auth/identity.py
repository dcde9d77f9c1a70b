import httpx

from app.config import settings


async def get_user_info(access_token: str) -> dict:
    """Fetch the caller's profile from the identity provider's userinfo endpoint."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(
            settings.auth_userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        resp.raise_for_status()
        return resp.json()


def subject_of(user_info: dict) -> str | None:
    """Stable user id from a userinfo document (OIDC ``sub``, else ``id``/``email``)."""
    for key in ("sub", "id", "email"):
        if user_info.get(key):
            return str(user_info[key])
    return None
