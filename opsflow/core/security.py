import logging
from typing import Annotated, Any, Dict, List

import jwt
import requests
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jwt.algorithms import RSAAlgorithm
from pydantic import BaseModel, Field

from opsflow.config import (
    KEYCLOAK_AUDIENCE,
    KEYCLOAK_ORG_CLAIM,
    KEYCLOAK_PERMISSIONS_CLAIM,
    KEYCLOAK_REALM,
    KEYCLOAK_SERVER_URL,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


class AuthenticatedUser(BaseModel):
    user_id: str
    username: str
    email: str | None = None
    full_name: str | None = None
    org_id: str
    permissions: List[str] = Field(default_factory=list)
    disabled: bool | None = False

    def has_permission(self, resource: str, action: str) -> bool:
        granted = set(self.permissions)
        return bool(granted & {f"{resource}:{action}", f"{resource}:*", "*"})


def get_keycloak_public_keys() -> Dict[str, Any]:
    """Fetch the realm's signing keys from the Keycloak JWKS endpoint."""
    certs_url = f"{KEYCLOAK_SERVER_URL}realms/{KEYCLOAK_REALM}/protocol/openid-connect/certs"
    response = requests.get(certs_url, timeout=10)
    response.raise_for_status()
    jwks_data = response.json()
    logger.debug("Fetched %d keys from JWKS", len(jwks_data.get("keys", [])))
    return jwks_data


def _permissions_from_claims(payload: Dict[str, Any]) -> List[str]:
    claim = payload.get(KEYCLOAK_PERMISSIONS_CLAIM)
    if isinstance(claim, str):
        return claim.split()
    if isinstance(claim, list):
        return [str(item) for item in claim]
    return []


def decode_token(token: str) -> Dict[str, Any]:
    """Verify an RS256 token against each realm key in turn."""
    expected_issuer = f"{KEYCLOAK_SERVER_URL}realms/{KEYCLOAK_REALM}"
    keys_from_jwks = get_keycloak_public_keys().get("keys", [])
    if not keys_from_jwks:
        raise jwt.InvalidTokenError("No signing keys published for realm")

    last_exception: jwt.PyJWTError = jwt.InvalidTokenError("Token could not be verified")
    for key_data in keys_from_jwks:
        try:
            public_key = RSAAlgorithm.from_jwk(key_data)
            return jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                audience=KEYCLOAK_AUDIENCE,
                issuer=expected_issuer,
            )
        except jwt.ExpiredSignatureError:
            raise
        except jwt.PyJWTError as e:
            logger.debug("Token rejected by key %s: %s", key_data.get("kid", "N/A"), e)
            last_exception = e
    raise last_exception


async def get_current_user(request: Request, token: Annotated[str, Depends(oauth2_scheme)]) -> AuthenticatedUser:
    """Extract the caller, organization and permissions from a Keycloak JWT."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        token = request.cookies.get("access_token", "")
    if not token:
        raise credentials_exception

    try:
        payload = decode_token(token)
    except jwt.PyJWTError as e:
        logger.info("Rejected access token: %s", e)
        raise credentials_exception from e
    except requests.RequestException as e:
        logger.error("Could not fetch Keycloak signing keys: %s", e)
        raise credentials_exception from e

    user_id = payload.get("sub", "")
    username = payload.get("preferred_username", "")
    org_id = payload.get(KEYCLOAK_ORG_CLAIM)
    if not user_id or not username or not org_id:
        logger.info("Token for %r lacks subject, username or organization", username or user_id)
        raise credentials_exception

    return AuthenticatedUser(
        user_id=user_id,
        username=username,
        email=payload.get("email"),
        full_name=payload.get("name"),
        org_id=str(org_id),
        permissions=_permissions_from_claims(payload),
        disabled=False,
    )


async def get_current_active_user(current_user: Annotated[AuthenticatedUser, Depends(get_current_user)]) -> AuthenticatedUser:
    """Check if the current user is active. Keycloak handles this before token issuance."""
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


def require_permission(resource: str, action: str):
    """Dependency factory gating a route on ``resource:action``."""

    async def checker(
            current_user: Annotated[AuthenticatedUser, Depends(get_current_active_user)],
    ) -> AuthenticatedUser:
        if not current_user.has_permission(resource, action):
            logger.info("User %s lacks %s:%s", current_user.user_id, resource, action)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission {resource}:{action}",
            )
        return current_user

    return checker
