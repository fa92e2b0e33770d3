"""Core data models used by adlab-ctl."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Iterator


class ResourceKind(str, Enum):
    """Kinds of directory objects the engine knows how to reconcile."""

    SITE = "site"
    SUBNET = "subnet"
    SITE_LINK = "site-link"
    OU = "ou"
    GROUP = "group"
    DNS_ZONE = "dns-zone"
    DNS_FORWARDER = "dns-forwarder"
    GPO = "gpo"
    GPO_LINK = "gpo-link"
    COMPUTER = "computer"
    USER = "user"
    MEMBERSHIP = "membership"


class Outcome(str, Enum):
    """Terminal state of a single resource within one run."""

    CREATED = "created"
    PLANNED = "planned"
    PRESENT = "present"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"
    INVALID = "invalid"
    NOT_FOUND = "not-found"
    ADDED = "added"
    ALREADY_MEMBER = "already-member"


FAILURE_OUTCOMES = frozenset({Outcome.FAILED, Outcome.INVALID, Outcome.NOT_FOUND})
CHANGE_OUTCOMES = frozenset({Outcome.CREATED, Outcome.ADDED})


@dataclass(frozen=True)
class DomainIdentity:
    """Fully qualified domain name plus the distinguished-name suffix."""

    fqdn: str
    dn_suffix: str

    def is_resolved(self) -> bool:
        """Return True when both parts are present."""
        return bool(self.fqdn.strip() and self.dn_suffix.strip())


def join_dn(path: str, domain: DomainIdentity) -> str:
    """Concatenate a partial path with the domain suffix.

    A path that already ends with the suffix is returned unchanged, so a
    parent given as a full distinguished name is accepted too.
    """
    trimmed = path.strip().strip(",")
    suffix = domain.dn_suffix.strip()
    if not trimmed:
        return suffix
    if trimmed.lower().endswith(suffix.lower()):
        return trimmed
    return f"{trimmed},{suffix}"


def ou_depth(path: str) -> int:
    """Count the OU segments of a path."""
    return sum(1 for part in path.split(",") if part.strip().upper().startswith("OU="))


def _require(value: str | None, label: str, kind: ResourceKind) -> None:
    if value is None or not str(value).strip():
        raise ConfigurationError(f"{kind.value} is missing required field '{label}'.")


@dataclass(frozen=True)
class Site:
    """Replication site."""

    kind: ClassVar[ResourceKind] = ResourceKind.SITE

    name: str
    description: str = ""

    def key(self, domain: DomainIdentity) -> str:
        return self.name

    def validate(self) -> None:
        _require(self.name, "name", self.kind)


@dataclass(frozen=True)
class Subnet:
    """IP subnet assigned to a site."""

    kind: ClassVar[ResourceKind] = ResourceKind.SUBNET

    cidr: str
    site: str
    location: str = ""

    def key(self, domain: DomainIdentity) -> str:
        return self.cidr

    def validate(self) -> None:
        _require(self.cidr, "cidr", self.kind)
        _require(self.site, "site", self.kind)


@dataclass(frozen=True)
class SiteLink:
    """Inter-site replication link."""

    kind: ClassVar[ResourceKind] = ResourceKind.SITE_LINK

    name: str
    sites: tuple[str, ...]
    cost: int = 100

    def key(self, domain: DomainIdentity) -> str:
        return self.name

    def validate(self) -> None:
        _require(self.name, "name", self.kind)
        if not self.sites:
            raise ConfigurationError(f"site link '{self.name}' must reference at least one site.")


@dataclass(frozen=True)
class OrganizationalUnit:
    """Organizational unit; `path` is the parent path, partial or full."""

    kind: ClassVar[ResourceKind] = ResourceKind.OU

    name: str
    path: str = ""
    description: str = ""

    def parent_dn(self, domain: DomainIdentity) -> str:
        """Return the distinguished name of the parent container."""
        return join_dn(self.path, domain)

    def distinguished_name(self, domain: DomainIdentity) -> str:
        """Return the computed distinguished name."""
        return f"OU={self.name},{self.parent_dn(domain)}"

    def depth(self) -> int:
        """Return the ordering key: OU segments in the parent path."""
        return ou_depth(self.path)

    def key(self, domain: DomainIdentity) -> str:
        return self.distinguished_name(domain)

    def validate(self) -> None:
        _require(self.name, "name", self.kind)


@dataclass(frozen=True)
class Group:
    """Security or distribution group."""

    kind: ClassVar[ResourceKind] = ResourceKind.GROUP

    sam_name: str
    ou: str
    display_name: str = ""
    scope: str = "Global"
    category: str = "Security"
    description: str = ""

    def ou_dn(self, domain: DomainIdentity) -> str:
        return join_dn(self.ou, domain)

    def key(self, domain: DomainIdentity) -> str:
        return self.sam_name

    def validate(self) -> None:
        _require(self.sam_name, "sam_name", self.kind)


@dataclass(frozen=True)
class DnsZone:
    """DNS zone hosted by the directory."""

    kind: ClassVar[ResourceKind] = ResourceKind.DNS_ZONE

    name: str
    replication_scope: str = "Domain"

    def key(self, domain: DomainIdentity) -> str:
        return self.name

    def validate(self) -> None:
        _require(self.name, "name", self.kind)


@dataclass(frozen=True)
class DnsForwarder:
    """Upstream DNS forwarder."""

    kind: ClassVar[ResourceKind] = ResourceKind.DNS_FORWARDER

    address: str

    def key(self, domain: DomainIdentity) -> str:
        return self.address

    def validate(self) -> None:
        _require(self.address, "address", self.kind)


@dataclass(frozen=True)
class Gpo:
    """Group policy object."""

    kind: ClassVar[ResourceKind] = ResourceKind.GPO

    name: str
    description: str = ""

    def key(self, domain: DomainIdentity) -> str:
        return self.name

    def validate(self) -> None:
        _require(self.name, "name", self.kind)


@dataclass(frozen=True)
class GpoLink:
    """Link between a policy object and an OU."""

    kind: ClassVar[ResourceKind] = ResourceKind.GPO_LINK

    gpo: str
    target: str
    enforced: bool = False
    enabled: bool = True

    def target_dn(self, domain: DomainIdentity) -> str:
        return join_dn(self.target, domain)

    def key(self, domain: DomainIdentity) -> str:
        return f"{self.gpo}@{self.target_dn(domain)}"

    def validate(self) -> None:
        _require(self.gpo, "gpo", self.kind)
        _require(self.target, "target", self.kind)


@dataclass(frozen=True)
class Computer:
    """Computer account."""

    kind: ClassVar[ResourceKind] = ResourceKind.COMPUTER

    name: str
    ou: str
    description: str = ""

    def ou_dn(self, domain: DomainIdentity) -> str:
        return join_dn(self.ou, domain)

    def key(self, domain: DomainIdentity) -> str:
        return self.name

    def validate(self) -> None:
        _require(self.name, "name", self.kind)


@dataclass(frozen=True)
class User:
    """User account together with its desired group memberships."""

    kind: ClassVar[ResourceKind] = ResourceKind.USER

    sam_name: str
    ou: str
    employee_id: int | None = None
    given_name: str = ""
    surname: str = ""
    display_name: str = ""
    email: str = ""
    title: str = ""
    department: str = ""
    phone: str = ""
    password: str | None = field(default=None, repr=False)
    enabled: bool = True
    groups: tuple[str, ...] = ()

    def ou_dn(self, domain: DomainIdentity) -> str:
        return join_dn(self.ou, domain)

    def user_principal_name(self, domain: DomainIdentity) -> str:
        return f"{self.sam_name}@{domain.fqdn}"

    def key(self, domain: DomainIdentity) -> str:
        return self.sam_name

    def validate(self) -> None:
        _require(self.sam_name, "sam_name", self.kind)


Resource = (
    Site | Subnet | SiteLink | OrganizationalUnit | Group | DnsZone | DnsForwarder | Gpo | GpoLink | Computer | User
)


@dataclass
class DesiredState:
    """The complete target configuration of one run."""

    sites: list[Site] = field(default_factory=list)
    subnets: list[Subnet] = field(default_factory=list)
    site_links: list[SiteLink] = field(default_factory=list)
    ous: list[OrganizationalUnit] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    dns_zones: list[DnsZone] = field(default_factory=list)
    dns_forwarders: list[DnsForwarder] = field(default_factory=list)
    gpos: list[Gpo] = field(default_factory=list)
    gpo_links: list[GpoLink] = field(default_factory=list)
    computers: list[Computer] = field(default_factory=list)
    users: list[User] = field(default_factory=list)

    def total(self) -> int:
        """Return the number of declared resources."""
        return sum(len(value) for value in self.__dict__.values())


@dataclass(frozen=True)
class OutcomeRecord:
    """One line of the outcome log."""

    stage: str
    kind: ResourceKind
    key: str
    outcome: Outcome
    error: str | None = None


@dataclass
class RunReport:
    """Ordered outcome log of a run."""

    domain: DomainIdentity
    dry_run: bool
    records: list[OutcomeRecord] = field(default_factory=list)
    cancelled: bool = False

    def add(
        self,
        stage: str,
        kind: ResourceKind,
        key: str,
        outcome: Outcome,
        error: str | None = None,
    ) -> OutcomeRecord:
        """Append a record and return it."""
        record = OutcomeRecord(stage=stage, kind=kind, key=key, outcome=outcome, error=error)
        self.records.append(record)
        return record

    def iter_stage(self, stage: str) -> Iterator[OutcomeRecord]:
        """Yield records belonging to one stage."""
        return (record for record in self.records if record.stage == stage)

    def stages(self) -> list[str]:
        """Return stage names in the order they were recorded."""
        return list(dict.fromkeys(record.stage for record in self.records))

    def counts(self) -> dict[Outcome, int]:
        """Return the number of records per outcome."""
        return dict(Counter(record.outcome for record in self.records))

    def outcome_of(self, kind: ResourceKind, key: str) -> Outcome | None:
        """Return the outcome recorded for a resource, if any."""
        for record in self.records:
            if record.kind == kind and record.key == key:
                return record.outcome
        return None

    def has_failures(self) -> bool:
        """Return True when any resource failed or was rejected."""
        return any(record.outcome in FAILURE_OUTCOMES for record in self.records)

    def has_changes(self) -> bool:
        """Return True when the run mutated the directory."""
        return any(record.outcome in CHANGE_OUTCOMES for record in self.records)


class AdlabCtlError(Exception):
    """Base exception for adlab-ctl."""


class ConfigurationError(AdlabCtlError):
    """Raised when desired state or settings are invalid."""


class ValidationError(ConfigurationError):
    """Raised when a desired-state document cannot be loaded."""


class PreconditionError(AdlabCtlError):
    """Raised when a run cannot start at all."""


class DirectoryError(AdlabCtlError):
    """Raised by a directory client when a single operation fails."""


class SubsystemUnavailable(DirectoryError):
    """Raised when an optional backing capability is not provisioned."""


class DiscoveryError(PreconditionError):
    """Raised when the domain identity or controller cannot be found."""
