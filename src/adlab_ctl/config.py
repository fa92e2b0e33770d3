"""Environment-driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import ConfigurationError


@dataclass(frozen=True)
class LdapSettings:
    """Connection settings for the directory service."""

    server: str
    port: int
    use_ssl: bool
    bind_user: str
    bind_password: str
    timeout: float


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    exercise_dir: Path
    domain_fqdn: str
    domain_dn_suffix: str
    ldap: LdapSettings
    dns_resolver: str
    templates_dir: Path
    log_level: str


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Return a boolean parsed from a string."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_number(name: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{value}'.") from exc


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    use_ssl = _parse_bool(os.getenv("LDAP_USE_SSL"), default=True)
    default_port = "636" if use_ssl else "389"
    ldap = LdapSettings(
        server=os.getenv("LDAP_SERVER", "").strip(),
        port=int(_parse_number("LDAP_PORT", os.getenv("LDAP_PORT", default_port), int)),
        use_ssl=use_ssl,
        bind_user=os.getenv("LDAP_BIND_USER", ""),
        bind_password=os.getenv("LDAP_BIND_PASSWORD", ""),
        timeout=float(_parse_number("LDAP_TIMEOUT", os.getenv("LDAP_TIMEOUT", "10"), float)),
    )

    return AppConfig(
        exercise_dir=Path(os.getenv("EXERCISE_DIR", "exercise")).resolve(),
        domain_fqdn=os.getenv("DOMAIN_FQDN", "").strip().rstrip("."),
        domain_dn_suffix=os.getenv("DOMAIN_DN_SUFFIX", "").strip(),
        ldap=ldap,
        dns_resolver=os.getenv("DNS_RESOLVER", "").strip(),
        templates_dir=Path(os.getenv("TEMPLATES_DIR", "templates")).resolve(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
