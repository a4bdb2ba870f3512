"""
Bearer token decoding and Appwrite account lookup.

Appwrite is the identity provider; this service only mirrors the accounts it
has seen (see users.models.User) so role links have a local row to point at.
"""
from typing import Any, Dict, Optional
import jwt
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)

BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


class AppwriteClient:
    """Lazily built server-side Appwrite client, shared by all requests."""
    
    _instance: Optional[Client] = None
    
    @classmethod
    def get_client(cls) -> Client:
        if cls._instance is None:
            client = Client()
            client.set_endpoint(config.APPWRITE_ENDPOINT)
            client.set_project(config.APPWRITE_PROJECT_ID)
            client.set_key(config.APPWRITE_API_KEY)
            cls._instance = client
        return cls._instance


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers=BEARER_CHALLENGE,
    )


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Decode a bearer token and return its claims.

    The signature is checked only when JWT_SECRET is configured; otherwise the
    claims are trusted as far as the account lookup in Appwrite confirms them.

    Raises:
        HTTPException: 401 if the token is malformed or expired
    """
    try:
        if config.JWT_SECRET:
            return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        log.info("Rejected expired bearer token")
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        log.info("Rejected bearer token: %s", e)
        raise _unauthorized(f"Invalid token: {e}")


async def get_appwrite_user(appwrite_user_id: str) -> Dict[str, Any]:
    """
    Fetch an account from Appwrite.

    Raises:
        HTTPException: 401 if Appwrite does not know the account
    """
    try:
        return Users(AppwriteClient.get_client()).get(appwrite_user_id)
    except AppwriteException as e:
        log.warning("Appwrite lookup failed for %s: %s", appwrite_user_id, e)
        raise _unauthorized(f"Failed to verify user: {e}")
