"""Typed configuration for django-expo.

Reads a single ``DJANGO_EXPO`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_expo.settings import get_config

    config = get_config()
    config.chapa.secret_key
    config.notifications.max_attempts
    config.currency
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class ChapaConfig:
    """Chapa payment gateway configuration."""

    secret_key: str | None = None
    base_url: str = "https://api.chapa.co"
    webhook_secret: str | None = None
    initialize_timeout: float = 30
    verify_timeout: float = 20


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    """Ticket confirmation email delivery settings."""

    from_email: str | None = None
    subject: str = "Your ticket for {event_name}"
    max_attempts: int = 5
    retry_backoff_seconds: int = 60


@dataclass(frozen=True, slots=True)
class ExpoConfig:
    """Top-level django-expo configuration."""

    chapa: ChapaConfig = field(default_factory=ChapaConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    site_url: str = "http://localhost:8000"
    return_url: str | None = None
    event_name: str = "Origin Expo"
    currency: str = "ETB"
    max_tickets_per_order: int = 10
    pending_order_expiry_minutes: int = 60
    qr_image_url: str = "https://chart.googleapis.com/chart"
    qr_size: int = 300


@functools.lru_cache(maxsize=1)
def get_config() -> ExpoConfig:
    """Build and return the expo configuration.

    Reads ``settings.DJANGO_EXPO`` (a plain dict) and returns a frozen
    :class:`ExpoConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_EXPO", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_EXPO must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    chapa_data = raw_data.pop("chapa", {})
    notifications_data = raw_data.pop("notifications", {})
    if not isinstance(chapa_data, Mapping):
        msg = "DJANGO_EXPO['chapa'] must be a mapping (dict-like object)"
        raise TypeError(msg)
    if not isinstance(notifications_data, Mapping):
        msg = "DJANGO_EXPO['notifications'] must be a mapping (dict-like object)"
        raise TypeError(msg)

    config = ExpoConfig(
        chapa=ChapaConfig(**dict(chapa_data)),
        notifications=NotificationConfig(**dict(notifications_data)),
        **raw_data,
    )
    _validate_expo_config(config)
    return config


def _validate_expo_config(config: ExpoConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "DJANGO_EXPO['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.site_url, str) or not config.site_url.startswith(("http://", "https://")):
        msg = "DJANGO_EXPO['site_url'] must be an absolute http(s) URL"
        raise ValueError(msg)
    if not isinstance(config.max_tickets_per_order, int) or config.max_tickets_per_order <= 0:
        msg = "DJANGO_EXPO['max_tickets_per_order'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.pending_order_expiry_minutes, int) or config.pending_order_expiry_minutes <= 0:
        msg = "DJANGO_EXPO['pending_order_expiry_minutes'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.qr_size, int) or config.qr_size <= 0:
        msg = "DJANGO_EXPO['qr_size'] must be a positive integer"
        raise ValueError(msg)
    for name in ("initialize_timeout", "verify_timeout"):
        value = getattr(config.chapa, name)
        if not isinstance(value, (int, float)) or value <= 0:
            msg = f"DJANGO_EXPO['chapa']['{name}'] must be a positive number"
            raise ValueError(msg)
    if not isinstance(config.notifications.max_attempts, int) or config.notifications.max_attempts <= 0:
        msg = "DJANGO_EXPO['notifications']['max_attempts'] must be a positive integer"
        raise ValueError(msg)
    backoff = config.notifications.retry_backoff_seconds
    if not isinstance(backoff, int) or backoff < 0:
        msg = "DJANGO_EXPO['notifications']['retry_backoff_seconds'] must be a non-negative integer"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_EXPO":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_expo.settings.clear_config_cache")
