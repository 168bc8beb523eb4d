import logging
from typing import Optional

import requests

from iisadmin.clients.iis import IISClient
from iisadmin.core.auth import Credentials
from iisadmin.core.config import Settings
from iisadmin.core.errors import IISAdminError
from iisadmin.core.executor import RetryPolicy

logger = logging.getLogger(__name__)


def build_http_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    s.verify = not settings.insecure
    if settings.proxy_url:
        s.proxies = {"http": settings.proxy_url, "https": settings.proxy_url}
    return s


def establish_session(
    settings: Settings,
    policy: Optional[RetryPolicy] = None,
    session: Optional[requests.Session] = None,
) -> IISClient:
    """Build a ready client for ``settings``.

    With NTLM credentials and no configured access key, an access token is
    minted once here. If that fails the client keeps going with NTLM only,
    unless ``settings.require_token`` is set, in which case the error is raised.
    """
    settings.validate()
    credentials = Credentials(
        identity=settings.ntlm_username if settings.has_ntlm else "",
        secret=settings.ntlm_password if settings.has_ntlm else "",
        realm=settings.ntlm_domain or None,
        bearer_token=settings.access_key or None,
    )
    client = IISClient(
        settings.host,
        credentials,
        session=session or build_http_session(settings),
        policy=policy or settings.retry,
    )

    if settings.has_ntlm and not settings.access_key:
        logger.info("No access key configured, generating an API token with NTLM credentials")
        try:
            token = client.acquire_token(
                settings.ntlm_username,
                settings.ntlm_password,
                settings.ntlm_domain or None,
                expires_on=settings.token_expires_on,
            )
        except IISAdminError as e:
            if settings.require_token:
                logger.error("API token generation failed, aborting: %s", e.message)
                raise
            logger.warning("API token generation failed, continuing with NTLM only; calls needing a token will fail: %s", e.message)
        else:
            client.set_token(token)
            logger.info("Generated API token (length %d)", len(token))

    logger.debug("IIS client ready for %s, auth mode %s", settings.host, client.auth_mode.value)
    return client
