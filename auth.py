"""
Bearer-token identity for API callers.

Tokens are issued by the external identity provider; this service only
verifies them and reads the claims it needs (subject, email, groups).
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import Settings
from errors import Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None
    email_verified: bool = False
    groups: Tuple[str, ...] = field(default_factory=tuple)
    is_admin: bool = False


class TokenDecoder:
    def __init__(self, settings: Settings):
        self.key = settings.jwt_key
        self.algorithms = settings.jwt_algorithm_list
        self.audience = settings.jwt_audience
        self.issuer = settings.jwt_issuer
        self.groups_claim = settings.groups_claim
        self.admin_group = settings.admin_group

    def decode(self, token: str) -> Identity:
        if not self.key:
            raise Unauthorized("Token verification is not configured")
        try:
            claims = jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError:
            raise Unauthorized("Could not validate credentials")

        subject = claims.get("sub")
        if not subject:
            raise Unauthorized("Could not validate credentials")

        groups = claims.get(self.groups_claim) or []
        if isinstance(groups, str):
            groups = [g.strip() for g in groups.split(",") if g.strip()]
        email_verified = claims.get("email_verified", False)
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"
        return Identity(
            user_id=str(subject),
            email=claims.get("email"),
            email_verified=bool(email_verified),
            groups=tuple(groups),
            is_admin=self.admin_group in groups,
        )


def get_optional_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Identity]:
    if credentials is None:
        return None
    decoder: TokenDecoder = request.app.state.token_decoder
    return decoder.decode(credentials.credentials)


def get_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise Unauthorized()
    return identity
