from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import requests
from requests.auth import AuthBase
from requests_ntlm import HttpNtlmAuth

ACCESS_TOKEN_HEADER = "Access-Token"


class AuthMode(Enum):
    NONE = "none"
    BEARER = "bearer"
    CHALLENGE_RESPONSE = "challenge_response"
    BOTH = "both"


@dataclass(frozen=True)
class Credentials:
    identity: str = ""
    secret: str = ""
    realm: Optional[str] = None
    bearer_token: Optional[str] = None

    @property
    def has_challenge_response(self) -> bool:
        return bool(self.identity and self.secret)

    @property
    def has_bearer(self) -> bool:
        return bool(self.bearer_token)

    @property
    def mode(self) -> AuthMode:
        if self.has_challenge_response and self.has_bearer:
            return AuthMode.BOTH
        if self.has_challenge_response:
            return AuthMode.CHALLENGE_RESPONSE
        if self.has_bearer:
            return AuthMode.BEARER
        return AuthMode.NONE

    def with_token(self, token: str) -> "Credentials":
        if self.bearer_token:
            raise ValueError("bearer token already set for this session")
        return replace(self, bearer_token=token)

    def __repr__(self) -> str:
        return f"Credentials(identity={self.identity!r}, realm={self.realm!r}, mode={self.mode.value})"


def format_username(identity: str, realm: Optional[str] = None) -> str:
    if realm:
        return f"{realm}\\{identity}"
    return identity


class TransportAuthenticator(AuthBase):
    """Attach NTLM and/or access-token auth to one prepared request.

    The mode is fixed when the authenticator is built. requests calls this
    once per prepared request, so each retry attempt gets fresh headers and
    a fresh NTLM negotiation.
    """

    def __init__(self, credentials: Credentials) -> None:
        self.mode = credentials.mode
        self.username = format_username(credentials.identity, credentials.realm)
        self._token = credentials.bearer_token
        self._ntlm: Optional[HttpNtlmAuth] = None
        if self.mode in (AuthMode.CHALLENGE_RESPONSE, AuthMode.BOTH):
            self._ntlm = HttpNtlmAuth(self.username, credentials.secret)

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        if self.mode in (AuthMode.BEARER, AuthMode.BOTH):
            r.headers[ACCESS_TOKEN_HEADER] = f"Bearer {self._token}"
        if self._ntlm is not None:
            r = self._ntlm(r)
        return r
