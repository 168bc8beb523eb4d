"""Access-token acquisition for the IIS Administration API.

The API mints keys through a two-step exchange against ``/security/api-keys``:
a GET authenticated with NTLM hands out an ``XSRF-TOKEN`` header and session
cookies, and a POST carrying both (plus NTLM again) creates the key. This
mirrors the ``New-AccessToken`` helper shipped with IIS.Administration.
"""

import json
import logging
from dataclasses import dataclass
from typing import Tuple

import requests

from iisadmin.core.auth import Credentials, TransportAuthenticator
from iisadmin.core.errors import (
    HandshakeRequestFailed,
    InvalidTokenFormat,
    MissingAntiForgeryToken,
    NetworkError,
    TokenIssuanceFailed,
)

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/security/api-keys"
XSRF_HEADER = "XSRF-TOKEN"
# fixed by the API contract
TOKEN_LENGTH = 54


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    id: str = ""
    expires_on: str = ""


def request_token(
    session: requests.Session,
    host: str,
    credentials: Credentials,
    expires_on: str = "",
    timeout: Tuple[float, float] = (10.0, 30.0),
    endpoint: str = TOKEN_ENDPOINT,
    xsrf_header: str = XSRF_HEADER,
) -> TokenGrant:
    url = f"{host.rstrip('/')}{endpoint}"
    # NTLM only, whatever token the caller may already hold
    auth = TransportAuthenticator(Credentials(credentials.identity, credentials.secret, credentials.realm))

    try:
        r = session.get(url, auth=auth, headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError("GET", url, reason=str(e)) from e
    if r.status_code != 200:
        raise HandshakeRequestFailed(
            f"GET {url} returned {r.status_code} while fetching {xsrf_header}",
            status=r.status_code,
            body=r.text,
        )
    xsrf = r.headers.get(xsrf_header)
    if not xsrf:
        raise MissingAntiForgeryToken(f"{xsrf_header} not found in response headers of GET {url}", status=r.status_code)

    payload = json.dumps({"expires_on": expires_on}).encode("utf-8")
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        xsrf_header: xsrf,
    }
    try:
        resp = session.post(url, auth=auth, headers=headers, cookies=r.cookies, data=payload, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError("POST", url, reason=str(e)) from e
    if resp.status_code not in (200, 201):
        raise TokenIssuanceFailed(
            f"POST {url} returned {resp.status_code}",
            status=resp.status_code,
            body=resp.text,
        )

    try:
        data = resp.json()
    except ValueError:
        raise TokenIssuanceFailed(f"POST {url} returned a non-JSON body", status=resp.status_code, body=resp.text)
    if not isinstance(data, dict):
        raise TokenIssuanceFailed(f"POST {url} returned an unexpected body", status=resp.status_code, body=resp.text)

    token = data.get("access_token") or data.get("accessToken") or ""
    if not token:
        raise TokenIssuanceFailed("access_token not found in response", status=resp.status_code, body=resp.text)
    if len(token) != TOKEN_LENGTH:
        raise InvalidTokenFormat(f"invalid token length: got {len(token)}, expected {TOKEN_LENGTH}")

    return TokenGrant(
        access_token=token,
        id=data.get("id") or "",
        expires_on=data.get("expires_on") or data.get("expiresOn") or "",
    )


def acquire_token(
    session: requests.Session,
    host: str,
    credentials: Credentials,
    expires_on: str = "",
    timeout: Tuple[float, float] = (10.0, 30.0),
) -> str:
    grant = request_token(session, host, credentials, expires_on=expires_on, timeout=timeout)
    logger.debug("issued access token id=%s length=%d", grant.id or "?", len(grant.access_token))
    return grant.access_token
