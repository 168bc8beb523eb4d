import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from iisadmin.core.errors import ConfigurationError
from iisadmin.core.executor import RetryPolicy
from iisadmin.core.utils import coalesce, env_bool, load_yaml

DEFAULT_CONFIG_PATH = "config.yml"
RETRY_KEYS = ("max_attempts", "base_delay", "max_delay", "connect_timeout", "read_timeout", "call_timeout", "retry_forbidden")


@dataclass
class Settings:
    host: str = ""
    access_key: str = ""
    ntlm_username: str = ""
    ntlm_password: str = field(default="", repr=False)
    ntlm_domain: str = ""
    insecure: bool = False
    proxy_url: str = ""
    require_token: bool = False
    token_expires_on: str = ""
    log_level: str = "INFO"
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def has_ntlm(self) -> bool:
        return bool(self.ntlm_username and self.ntlm_password)

    def validate(self) -> None:
        if not self.host:
            raise ConfigurationError("IIS host must be set via IIS_HOST or --host")
        if not self.access_key and not self.has_ntlm:
            raise ConfigurationError(
                "Either IIS_ACCESS_KEY or IIS_NTLM_USERNAME/IIS_NTLM_PASSWORD must be provided; both may be used together"
            )


def retry_policy_from(cfg: Optional[Mapping]) -> RetryPolicy:
    cfg = cfg or {}
    unknown = set(cfg) - set(RETRY_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown retry settings: {', '.join(sorted(unknown))}")
    kwargs = {}
    if "max_attempts" in cfg:
        kwargs["max_attempts"] = int(cfg["max_attempts"])
    for key in ("base_delay", "max_delay", "connect_timeout", "read_timeout", "call_timeout"):
        if cfg.get(key) is not None:
            kwargs[key] = float(cfg[key])
    if "retry_forbidden" in cfg:
        kwargs["retry_forbidden"] = bool(cfg["retry_forbidden"])
    policy = RetryPolicy(**kwargs)
    if policy.max_attempts < 1:
        raise ConfigurationError("retry.max_attempts must be at least 1")
    return policy


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_path: str = DEFAULT_CONFIG_PATH,
    host: Optional[str] = None,
) -> Settings:
    """Settings from .env / environment, with an optional YAML file for retry tuning."""
    if env is None:
        load_dotenv()
        env = os.environ
    cfg = load_yaml(config_path) if config_path and os.path.exists(config_path) else {}

    return Settings(
        host=(coalesce(host, env.get("IIS_HOST"), cfg.get("host")) or "").rstrip("/"),
        access_key=env.get("IIS_ACCESS_KEY") or "",
        ntlm_username=env.get("IIS_NTLM_USERNAME") or "",
        ntlm_password=env.get("IIS_NTLM_PASSWORD") or "",
        ntlm_domain=coalesce(env.get("IIS_NTLM_DOMAIN"), cfg.get("ntlm_domain")) or "",
        insecure=env_bool(env.get("IIS_INSECURE"), default=bool(cfg.get("insecure", False))),
        proxy_url=coalesce(env.get("IIS_PROXY_URL"), cfg.get("proxy_url")) or "",
        require_token=env_bool(env.get("IIS_REQUIRE_TOKEN"), default=bool(cfg.get("require_token", False))),
        token_expires_on=coalesce(env.get("IIS_TOKEN_EXPIRES_ON"), cfg.get("token_expires_on")) or "",
        log_level=(coalesce(env.get("IIS_LOG_LEVEL"), cfg.get("log_level")) or "INFO").upper(),
        retry=retry_policy_from(cfg.get("retry")),
    )
