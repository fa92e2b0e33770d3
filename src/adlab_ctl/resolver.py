"""Creation ordering across and within resource kinds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .models import (
    ConfigurationError,
    DesiredState,
    DnsForwarder,
    DomainIdentity,
    OrganizationalUnit,
    Resource,
)

LOG = logging.getLogger("adlab_ctl")

SITES = "sites"
SUBNETS = "subnets"
SITE_LINKS = "site-links"
OUS = "ous"
GROUPS = "groups"
SERVICES = "services"
POLICIES = "policies"
COMPUTERS = "computers"
USERS = "users"
MEMBERSHIPS = "memberships"

STAGE_ORDER = (SITES, SUBNETS, SITE_LINKS, OUS, GROUPS, SERVICES, POLICIES, COMPUTERS, USERS)


@dataclass(frozen=True)
class Stage:
    """One ordered batch of resources, or the reason it was rejected."""

    name: str
    resources: tuple[Resource, ...]
    error: ConfigurationError | None = None

    def is_valid(self) -> bool:
        return self.error is None


def sort_ous(ous: Sequence[OrganizationalUnit]) -> list[OrganizationalUnit]:
    """Order OUs by ascending parent depth, keeping input order on ties."""
    return sorted(ous, key=lambda ou: ou.depth())


def _dedupe_forwarders(forwarders: Sequence[DnsForwarder]) -> list[DnsForwarder]:
    """Drop repeated forwarder addresses, first occurrence wins."""
    seen: set[str] = set()
    unique: list[DnsForwarder] = []
    for forwarder in forwarders:
        address = forwarder.address.strip()
        if address in seen:
            LOG.debug("Ignoring repeated DNS forwarder %s", address)
            continue
        seen.add(address)
        unique.append(forwarder)
    return unique


def _check_stage(resources: Sequence[Resource], domain: DomainIdentity) -> None:
    """Raise ConfigurationError for missing fields or duplicate identities."""
    seen: dict[tuple[str, str], Resource] = {}
    for resource in resources:
        resource.validate()
        identity = (resource.kind.value, resource.key(domain).lower())
        if identity in seen:
            raise ConfigurationError(
                f"Duplicate {resource.kind.value} identity '{resource.key(domain)}'.",
            )
        seen[identity] = resource


def _build_stage(name: str, resources: Sequence[Resource], domain: DomainIdentity) -> Stage:
    try:
        _check_stage(resources, domain)
    except ConfigurationError as exc:
        return Stage(name=name, resources=tuple(resources), error=exc)
    return Stage(name=name, resources=tuple(resources))


def resolve_stages(desired: DesiredState, domain: DomainIdentity) -> list[Stage]:
    """Return every stage of a run in dependency order.

    The fixed stage order is already a topological sort of the kinds, so the
    only ordering computed here is the OU parent-depth sort.
    """
    batches: dict[str, list[Resource]] = {
        SITES: list(desired.sites),
        SUBNETS: list(desired.subnets),
        SITE_LINKS: list(desired.site_links),
        OUS: list(sort_ous(desired.ous)),
        GROUPS: list(desired.groups),
        SERVICES: [*desired.dns_zones, *_dedupe_forwarders(desired.dns_forwarders)],
        POLICIES: [*desired.gpos, *desired.gpo_links],
        COMPUTERS: list(desired.computers),
        USERS: list(desired.users),
    }
    return [_build_stage(name, batches[name], domain) for name in STAGE_ORDER]
