"""Load and validate the desired-state documents of an exercise."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Literal, TypeVar

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from jinja2.exceptions import TemplateError
from pydantic import BaseModel, Field, SecretStr, field_validator

from .models import (
    Computer,
    DesiredState,
    DnsForwarder,
    DnsZone,
    DomainIdentity,
    Gpo,
    GpoLink,
    Group,
    OrganizationalUnit,
    PreconditionError,
    Site,
    SiteLink,
    Subnet,
    User,
    ValidationError,
)

LOG = logging.getLogger("adlab_ctl")

TOPOLOGY = "topology.yml"
SERVICES = "services.yml"
ACCOUNTS = "accounts.yml"
COMPUTERS = "computers.yml"
POLICIES = "policies.yml"
DOCUMENTS = (TOPOLOGY, SERVICES, ACCOUNTS, COMPUTERS, POLICIES)


class SiteSpec(BaseModel):
    name: str = ""
    description: str = ""


class SubnetSpec(BaseModel):
    cidr: str = ""
    site: str = ""
    location: str = ""


class SiteLinkSpec(BaseModel):
    name: str = ""
    sites: list[str] = Field(default_factory=list)
    cost: int = Field(default=100, ge=1)


class OUSpec(BaseModel):
    """Schema for an organizational unit; `path` is the parent path."""

    name: str = ""
    path: str = ""
    description: str = ""


class TopologySpec(BaseModel):
    """Schema for the structural topology document."""

    sites: list[SiteSpec] = Field(default_factory=list)
    subnets: list[SubnetSpec] = Field(default_factory=list)
    site_links: list[SiteLinkSpec] = Field(default_factory=list)
    ous: list[OUSpec] = Field(default_factory=list)


class DnsZoneSpec(BaseModel):
    name: str = ""
    replication_scope: Literal["Forest", "Domain", "Legacy"] = "Domain"


class ServicesSpec(BaseModel):
    """Schema for the DNS services document."""

    dns_zones: list[DnsZoneSpec] = Field(default_factory=list)
    dns_forwarders: list[str] = Field(default_factory=list)


class GroupSpec(BaseModel):
    sam_name: str = ""
    display_name: str = ""
    scope: Literal["DomainLocal", "Global", "Universal"] = "Global"
    category: Literal["Security", "Distribution"] = "Security"
    ou: str = ""
    description: str = ""


class UserSpec(BaseModel):
    """Schema for a user account and the groups it should belong to."""

    sam_name: str = ""
    employee_id: int | None = Field(default=None, ge=0)
    given_name: str = ""
    surname: str = ""
    display_name: str = ""
    email: str = ""
    title: str = ""
    department: str = ""
    phone: str = ""
    ou: str = ""
    password: SecretStr | None = None
    enabled: bool = True
    groups: list[str] = Field(default_factory=list)

    @field_validator("groups")
    @classmethod
    def _strip_groups(cls, value: list[str]) -> list[str]:
        """Drop blank group names."""
        return [group.strip() for group in value if group and group.strip()]


class AccountsSpec(BaseModel):
    """Schema for the groups-and-users document."""

    groups: list[GroupSpec] = Field(default_factory=list)
    users: list[UserSpec] = Field(default_factory=list)


class ComputerSpec(BaseModel):
    name: str = ""
    ou: str = ""
    description: str = ""


class ComputersSpec(BaseModel):
    computers: list[ComputerSpec] = Field(default_factory=list)


class GpoSpec(BaseModel):
    name: str = ""
    description: str = ""


class GpoLinkSpec(BaseModel):
    gpo: str = ""
    target: str = ""
    enforced: bool = False
    enabled: bool = True


class PoliciesSpec(BaseModel):
    """Schema for the policy objects and links document."""

    gpos: list[GpoSpec] = Field(default_factory=list)
    gpo_links: list[GpoLinkSpec] = Field(default_factory=list)


SpecT = TypeVar("SpecT", bound=BaseModel)


def _render_yaml(path: Path, extra_context: dict[str, Any] | None = None) -> str:
    """Render a YAML file through Jinja2."""
    env = Environment(
        loader=FileSystemLoader(str(path.parent)),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    template = env.get_template(path.name)
    context: dict[str, Any] = {"env": os.environ}
    if extra_context:
        context.update(extra_context)
    return template.render(**context)


def _load_document(path: Path, schema: type[SpecT], context: dict[str, Any]) -> SpecT:
    """Render, parse and validate one document; a missing file is empty."""
    if not path.is_file():
        LOG.info("No %s in %s; treating it as empty", path.name, path.parent)
        return schema()
    try:
        rendered = _render_yaml(path, context)
    except TemplateError as exc:
        raise ValidationError(f"{path.name}: failed to render template: {exc}") from exc
    try:
        data = yaml.safe_load(rendered) or {}
    except yaml.YAMLError as exc:  # noqa: BLE001
        raise ValidationError(f"{path.name}: failed to parse YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"{path.name}: top level must be a mapping.")

    try:
        return schema(**data)
    except Exception as exc:  # noqa: BLE001
        raise ValidationError(f"{path.name}: validation error: {exc}") from exc


def _template_context(domain: DomainIdentity | None, template_vars: dict[str, Any] | None) -> dict[str, Any]:
    context: dict[str, Any] = {}
    if domain is not None:
        context["domain"] = asdict(domain)
    if template_vars:
        context.update(template_vars)
    return context


def load_desired_state(
    exercise_dir: Path,
    domain: DomainIdentity | None = None,
    template_vars: dict[str, Any] | None = None,
) -> DesiredState:
    """Load the five exercise documents into one desired state."""
    if not exercise_dir.is_dir():
        raise PreconditionError(f"Exercise directory {exercise_dir} does not exist.")
    if not any((exercise_dir / name).is_file() for name in DOCUMENTS):
        raise PreconditionError(f"Exercise directory {exercise_dir} holds none of: {', '.join(DOCUMENTS)}.")

    context = _template_context(domain, template_vars)
    topology = _load_document(exercise_dir / TOPOLOGY, TopologySpec, context)
    services = _load_document(exercise_dir / SERVICES, ServicesSpec, context)
    accounts = _load_document(exercise_dir / ACCOUNTS, AccountsSpec, context)
    computers = _load_document(exercise_dir / COMPUTERS, ComputersSpec, context)
    policies = _load_document(exercise_dir / POLICIES, PoliciesSpec, context)

    desired = DesiredState(
        sites=[Site(name=s.name, description=s.description) for s in topology.sites],
        subnets=[Subnet(cidr=s.cidr, site=s.site, location=s.location) for s in topology.subnets],
        site_links=[SiteLink(name=s.name, sites=tuple(s.sites), cost=s.cost) for s in topology.site_links],
        ous=[OrganizationalUnit(name=o.name, path=o.path, description=o.description) for o in topology.ous],
        groups=[
            Group(
                sam_name=g.sam_name,
                ou=g.ou,
                display_name=g.display_name,
                scope=g.scope,
                category=g.category,
                description=g.description,
            )
            for g in accounts.groups
        ],
        dns_zones=[DnsZone(name=z.name, replication_scope=z.replication_scope) for z in services.dns_zones],
        dns_forwarders=[DnsForwarder(address=address) for address in services.dns_forwarders],
        gpos=[Gpo(name=g.name, description=g.description) for g in policies.gpos],
        gpo_links=[
            GpoLink(gpo=link.gpo, target=link.target, enforced=link.enforced, enabled=link.enabled)
            for link in policies.gpo_links
        ],
        computers=[Computer(name=c.name, ou=c.ou, description=c.description) for c in computers.computers],
        users=[_to_user(spec) for spec in accounts.users],
    )
    LOG.info("Loaded %s desired resources from %s", desired.total(), exercise_dir)
    return desired


def _to_user(spec: UserSpec) -> User:
    return User(
        sam_name=spec.sam_name,
        ou=spec.ou,
        employee_id=spec.employee_id,
        given_name=spec.given_name,
        surname=spec.surname,
        display_name=spec.display_name,
        email=spec.email,
        title=spec.title,
        department=spec.department,
        phone=spec.phone,
        password=spec.password.get_secret_value() if spec.password else None,
        enabled=spec.enabled,
        groups=tuple(spec.groups),
    )
