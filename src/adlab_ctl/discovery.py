"""Domain identity and controller discovery built on dnspython."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .config import AppConfig
from .models import DiscoveryError, DomainIdentity

LOG = logging.getLogger("adlab_ctl")

DC_SRV_TEMPLATE = "_ldap._tcp.dc._msdcs.{fqdn}"


@dataclass(frozen=True)
class ControllerLocation:
    """A domain controller advertised through DNS."""

    host: str
    port: int
    priority: int = 0
    weight: int = 0


def dn_suffix_from_fqdn(fqdn: str) -> str:
    """Return `DC=...` components for a dotted domain name."""
    labels = [label for label in fqdn.strip().rstrip(".").split(".") if label]
    return ",".join(f"DC={label}" for label in labels)


def fqdn_from_dn_suffix(suffix: str) -> str:
    """Return the dotted domain name encoded in the `DC=` components."""
    labels = []
    for part in suffix.split(","):
        attribute, _, value = part.strip().partition("=")
        if attribute.upper() == "DC" and value:
            labels.append(value)
    return ".".join(labels)


def locate_domain_controllers(fqdn: str, nameserver: str = "", timeout: float = 5.0) -> list[ControllerLocation]:
    """Return domain controllers for `fqdn` ordered by SRV priority and weight."""
    try:
        import dns.exception
        import dns.resolver
    except ImportError as exc:  # noqa: BLE001
        raise DiscoveryError("dnspython is required for domain controller discovery.") from exc

    resolver = dns.resolver.Resolver()
    if nameserver:
        resolver.nameservers = [nameserver]
    query = DC_SRV_TEMPLATE.format(fqdn=fqdn.rstrip("."))
    try:
        answer = resolver.resolve(query, "SRV", lifetime=timeout)
    except dns.exception.DNSException as exc:
        raise DiscoveryError(f"SRV lookup failed for {query}: {exc}") from exc

    locations = [
        ControllerLocation(
            host=rdata.target.to_text().rstrip("."),
            port=int(rdata.port),
            priority=int(rdata.priority),
            weight=int(rdata.weight),
        )
        for rdata in answer
    ]
    locations.sort(key=lambda loc: (loc.priority, -loc.weight, loc.host))
    LOG.debug("Located %s domain controller(s) for %s", len(locations), fqdn)
    return locations


def resolve_domain_identity(
    config: AppConfig,
    naming_context: Callable[[], str] | None = None,
) -> DomainIdentity:
    """Combine explicit settings with what can be derived or discovered.

    `naming_context` is asked for the directory's default naming context
    only when neither the FQDN nor the suffix is configured.
    """
    fqdn = config.domain_fqdn
    suffix = config.domain_dn_suffix
    if not suffix and fqdn:
        suffix = dn_suffix_from_fqdn(fqdn)
    if not suffix and naming_context is not None:
        suffix = naming_context().strip()
        LOG.info("Discovered naming context %s", suffix)
    if suffix and not fqdn:
        fqdn = fqdn_from_dn_suffix(suffix)

    identity = DomainIdentity(fqdn=fqdn, dn_suffix=suffix)
    if not identity.is_resolved():
        raise DiscoveryError("Domain identity unresolved; set DOMAIN_FQDN or DOMAIN_DN_SUFFIX.")
    return identity
