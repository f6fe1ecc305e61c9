"""
Teori Settings Resolver
Builds a ProviderSettings snapshot from site_settings rows and environment fallbacks,
cached in memory with a TTL.

The environment is teori_environment when it names one, else production if a
PRODUCTION_FLAG_KEYS flag is "true", else sandbox.

Key precedence (first non-empty value wins):

    field           production                                sandbox
    api_key         teori_prod_api_key, teori_api_key         teori_api_key, teori_dev_api_key
    api_secret      teori_prod_api_secret,                    teori_api_secret, teori_secret,
                    teori_prod_shared_secret                  teori_shared_secret
    api_url         teori_prod_api_url, teori_api_url         teori_dev_api_url, teori_api_url
    webhook_secret  teori_webhook_secret, teori_secret        (same)

then the ENV_FALLBACKS variables, then DEFAULT_API_URLS for api_url.
The public URL prefers the environment (NEXT_PUBLIC_APP_URL, PUBLIC_APP_URL) over
the public_app_url, site_public_url, app_url and teori_public_url settings.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PRODUCTION = "production"
SANDBOX = "sandbox"

DEFAULT_CACHE_DURATION = 300  # seconds
DEFAULT_RETRY_ATTEMPTS = 3

DEFAULT_API_URLS = {
    PRODUCTION: "https://payments.teori.nu",
    SANDBOX: "https://pago.teori.nu",
}

SETTING_KEYS: dict[str, dict[str, tuple[str, ...]]] = {
    "api_key": {
        PRODUCTION: ("teori_prod_api_key", "teori_api_key"),
        SANDBOX: ("teori_api_key", "teori_dev_api_key"),
    },
    "api_secret": {
        PRODUCTION: ("teori_prod_api_secret", "teori_prod_shared_secret"),
        SANDBOX: ("teori_api_secret", "teori_secret", "teori_shared_secret"),
    },
    "api_url": {
        PRODUCTION: ("teori_prod_api_url", "teori_api_url"),
        SANDBOX: ("teori_dev_api_url", "teori_api_url"),
    },
    "webhook_secret": {
        PRODUCTION: ("teori_webhook_secret", "teori_secret"),
        SANDBOX: ("teori_webhook_secret", "teori_secret"),
    },
}

ENV_FALLBACKS: dict[str, tuple[str, ...]] = {
    "api_key": ("TEORI_API_KEY", "TEORI_MERCHANT_ID"),
    "api_secret": ("TEORI_API_SECRET", "TEORI_SHARED_SECRET"),
    "api_url": (),
    "webhook_secret": ("TEORI_WEBHOOK_SECRET",),
}

PUBLIC_URL_ENV = ("NEXT_PUBLIC_APP_URL", "PUBLIC_APP_URL")
PUBLIC_URL_KEYS = ("public_app_url", "site_public_url", "app_url", "teori_public_url")

PRODUCTION_FLAG_KEYS = ("teori_prod_enabled", "teori_use_prod_env")


@dataclass(frozen=True)
class ProviderSettings:
    enabled: bool
    api_key: str
    api_secret: str
    api_url: str
    webhook_secret: str
    environment: str
    public_url: str
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    cache_duration: int = DEFAULT_CACHE_DURATION


@dataclass
class SettingsCache:
    """In-memory snapshot holder. Readers may see a stale snapshot; reloads overwrite."""

    snapshot: Optional[ProviderSettings] = None
    loaded_at: Optional[float] = None
    ttl: float = DEFAULT_CACHE_DURATION

    def fresh(self, now: float) -> bool:
        return (
            self.snapshot is not None
            and self.loaded_at is not None
            and now - self.loaded_at < self.ttl
        )

    def store(self, snapshot: ProviderSettings, now: float) -> None:
        self.snapshot = snapshot
        self.loaded_at = now

    def clear(self) -> None:
        self.snapshot = None
        self.loaded_at = None


def first_value(source: Mapping[str, str], keys: tuple[str, ...]) -> str:
    """Return the first non-empty value among keys, or an empty string"""
    for key in keys:
        value = source.get(key)
        if value:
            return value
    return ""


def mask_secret(value: str) -> str:
    return f"{value[:4]}...{value[-4:]}" if value else ""


def _parse_int(settings_map: Mapping[str, str], key: str, default: int) -> int:
    raw = settings_map.get(key)
    if not raw:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Ignoring non-integer setting {key}={raw!r}, using {default}")
        return default
    if value < 1:
        logger.warning(f"⚠️ Ignoring non-positive setting {key}={value}, using {default}")
        return default
    return value


class TeoriSettingsResolver:
    """Resolves and caches Teori provider settings"""

    def __init__(
        self,
        load_settings: Callable[[], Mapping[str, str]],
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        cache: Optional[SettingsCache] = None,
    ):
        self.load_settings = load_settings
        self.environ = environ if environ is not None else os.environ
        self.clock = clock
        self.cache = cache or SettingsCache()

    @property
    def current(self) -> Optional[ProviderSettings]:
        """Last resolved snapshot, without reloading"""
        return self.cache.snapshot

    def invalidate(self) -> None:
        self.cache.clear()

    def resolve(self, force_reload: bool = False) -> ProviderSettings:
        now = self.clock()
        if not force_reload and self.cache.fresh(now):
            return self.cache.snapshot

        logger.debug("Loading Teori settings from site settings")
        try:
            settings_map = dict(self.load_settings())
        except Exception as e:
            logger.error(f"❌ Failed to load Teori settings: {e}")
            raise

        settings = self._build(settings_map)

        if settings.cache_duration != self.cache.ttl:
            logger.debug(f"Updated Teori settings cache duration to {settings.cache_duration}s")
            self.cache.ttl = settings.cache_duration
        self.cache.store(settings, now)

        logger.info(
            f"✅ Teori settings loaded: environment={settings.environment}, "
            f"enabled={settings.enabled}, api_url={settings.api_url}, "
            f"has_api_key={bool(settings.api_key)}, public_url={settings.public_url or '-'}"
        )
        return settings

    def _build(self, settings_map: Mapping[str, str]) -> ProviderSettings:
        public_url = first_value(self.environ, PUBLIC_URL_ENV) or first_value(
            settings_map, PUBLIC_URL_KEYS
        )
        if public_url and not public_url.startswith("https://"):
            logger.error(f"❌ Invalid public URL for Teori: {public_url}")
            raise ConfigurationError("Teori requires HTTPS public URL")
        public_url = public_url.rstrip("/")

        prod_flag = any(settings_map.get(key) == "true" for key in PRODUCTION_FLAG_KEYS)
        base_enabled = settings_map.get("teori_enabled") == "true"
        explicit_environment = (settings_map.get("teori_environment") or "").strip().lower()
        if explicit_environment in (PRODUCTION, SANDBOX):
            environment = explicit_environment
        elif prod_flag:
            environment = PRODUCTION
        else:
            environment = SANDBOX

        resolved = {}
        for field, keys in SETTING_KEYS.items():
            resolved[field] = first_value(settings_map, keys[environment]) or first_value(
                self.environ, ENV_FALLBACKS[field]
            )
        resolved["api_url"] = (resolved["api_url"] or DEFAULT_API_URLS[environment]).rstrip("/")

        if not resolved["api_secret"]:
            logger.error(
                f"❌ Missing critical Teori settings (api_secret): environment={environment}, "
                f"has_api_key={bool(resolved['api_key'])}"
            )
            raise ConfigurationError("Missing Teori API credentials")

        return ProviderSettings(
            enabled=base_enabled or prod_flag,
            environment=environment,
            public_url=public_url,
            retry_attempts=_parse_int(settings_map, "teori_retry_attempts", DEFAULT_RETRY_ATTEMPTS),
            cache_duration=_parse_int(settings_map, "teori_cache_duration", DEFAULT_CACHE_DURATION),
            **resolved,
        )

    def is_enabled(self) -> bool:
        """True only when settings resolve cleanly and Teori is switched on"""
        try:
            return self.resolve().enabled
        except Exception as e:
            logger.warning(f"⚠️ Teori treated as disabled: {e}")
            return False

    def describe(self, force_reload: bool = False) -> dict:
        """Resolved settings for diagnostics, with secrets masked"""
        settings = self.resolve(force_reload)
        return {
            "enabled": settings.enabled,
            "environment": settings.environment,
            "api_url": settings.api_url,
            "public_url": settings.public_url,
            "has_api_key": bool(settings.api_key),
            "has_api_secret": bool(settings.api_secret),
            "api_key_masked": mask_secret(settings.api_key),
        }
