"""Directory client speaking LDAP to an Active Directory domain controller."""

from __future__ import annotations

import logging
from typing import Any, NoReturn

from ldap3 import ALL, BASE, MODIFY_ADD, MODIFY_REPLACE, NTLM, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException, LDAPInvalidDnError
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn, parse_dn

from .config import LdapSettings
from .directory import DirectoryClient
from .models import (
    Computer,
    DirectoryError,
    DomainIdentity,
    Group,
    OrganizationalUnit,
    Resource,
    ResourceKind,
    Site,
    SiteLink,
    Subnet,
    SubsystemUnavailable,
    User,
)

LOG = logging.getLogger("adlab_ctl")

# DNS server and policy objects are managed outside LDAP (DNS server RPC, SYSVOL).
UNAVAILABLE_KINDS = frozenset(
    {ResourceKind.DNS_ZONE, ResourceKind.DNS_FORWARDER, ResourceKind.GPO, ResourceKind.GPO_LINK}
)

NO_SUCH_OBJECT = 32
ENTRY_ALREADY_EXISTS = 68

GROUP_SCOPE_FLAGS = {"domainlocal": 0x4, "global": 0x2, "universal": 0x8}
SECURITY_ENABLED = 0x80000000

UAC_NORMAL_ACCOUNT = 0x200
UAC_ACCOUNTDISABLE = 0x2
UAC_WORKSTATION_TRUST_ACCOUNT = 0x1000

SITE_LINK_REPL_INTERVAL = 180


def group_type(scope: str, category: str) -> int:
    """Return the signed 32-bit groupType value for a scope and category."""
    try:
        value = GROUP_SCOPE_FLAGS[scope.replace(" ", "").lower()]
    except KeyError as exc:
        raise DirectoryError(f"Unknown group scope '{scope}'.") from exc
    if category.lower() == "security":
        value |= SECURITY_ENABLED
    return value - (1 << 32) if value >= (1 << 31) else value


def _compact(attributes: dict[str, Any]) -> dict[str, Any]:
    """Drop empty attribute values; LDAP rejects empty strings."""
    return {name: value for name, value in attributes.items() if value not in (None, "", [], ())}


class LdapDirectoryClient(DirectoryClient):
    """Reconciles sites, OUs, accounts and memberships over LDAP."""

    def __init__(self, connection: Connection, domain: DomainIdentity | None = None):
        self.connection = connection
        self.domain = domain

    @classmethod
    def connect(cls, settings: LdapSettings, server: str | None = None) -> "LdapDirectoryClient":
        """Open and bind a connection using the configured credentials."""
        host = server or settings.server
        if not host:
            raise DirectoryError("No LDAP server configured or discovered.")
        authentication = NTLM if "\\" in settings.bind_user else SIMPLE
        try:
            ldap_server = Server(
                host,
                port=settings.port,
                use_ssl=settings.use_ssl,
                get_info=ALL,
                connect_timeout=settings.timeout,
            )
            connection = Connection(
                ldap_server,
                user=settings.bind_user or None,
                password=settings.bind_password or None,
                authentication=authentication,
                auto_bind=True,
                receive_timeout=int(settings.timeout),
            )
        except LDAPException as exc:
            raise DirectoryError(f"Could not bind to {host}:{settings.port}: {exc}") from exc
        LOG.info("Connected to %s:%s", host, settings.port)
        return cls(connection)

    def naming_context(self) -> str:
        """Return the default naming context advertised in the root DSE."""
        return self._root_dse_value("defaultNamingContext")

    def use_domain(self, domain: DomainIdentity) -> None:
        """Set the domain every lookup is scoped to."""
        self.domain = domain

    def is_available(self, kind: ResourceKind) -> bool:
        return kind not in UNAVAILABLE_KINDS

    def exists(self, kind: ResourceKind, key: str) -> bool:
        self._check_available(kind)
        if kind == ResourceKind.OU:
            return self._dn_exists(key)
        if kind in {ResourceKind.SITE, ResourceKind.SUBNET, ResourceKind.SITE_LINK}:
            return self._dn_exists(self._topology_dn(kind, key))
        return self._account_dn(kind, key) is not None

    def create(self, kind: ResourceKind, resource: Resource, domain: DomainIdentity, dry_run: bool) -> None:
        self._check_available(kind)
        self.domain = domain
        dn, object_class, attributes = self._describe(resource, domain)
        try:
            parse_dn(dn)
        except LDAPInvalidDnError as exc:
            raise DirectoryError(f"Malformed distinguished name '{dn}': {exc}") from exc
        if dry_run:
            LOG.debug("Would add %s (%s)", dn, object_class)
            return

        self._add(dn, object_class, attributes)
        if isinstance(resource, Site):
            self._add(f"CN=NTDS Site Settings,{dn}", "nTDSSiteSettings", {})
            self._add(f"CN=Servers,{dn}", "serversContainer", {})
        elif isinstance(resource, User):
            self._finish_user(dn, resource)

    def add_membership(self, group_key: str, member_key: str, dry_run: bool) -> None:
        # Either side may only be planned; both were resolved by the caller.
        if dry_run:
            LOG.debug("Would add %s to %s", member_key, group_key)
            return
        group_dn = self._require_dn(ResourceKind.GROUP, group_key)
        member_dn = self._require_dn(ResourceKind.USER, member_key)
        ok = self._call("modify", group_dn, {"member": [(MODIFY_ADD, [member_dn])]})
        if not ok and self.connection.result.get("result") != ENTRY_ALREADY_EXISTS:
            self._raise_result(f"adding {member_key} to {group_key}")

    def list_effective_members(self, group_key: str) -> set[str]:
        group_dn = self._require_dn(ResourceKind.GROUP, group_key)
        # LDAP_MATCHING_RULE_IN_CHAIN walks nested groups server-side.
        search_filter = f"(memberOf:1.2.840.113556.1.4.1941:={escape_filter_chars(group_dn)})"
        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=self._suffix(),
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=["sAMAccountName"],
                paged_size=500,
                generator=True,
            )
            members: set[str] = set()
            for entry in entries:
                if entry.get("type") != "searchResEntry":
                    continue
                value = entry["attributes"].get("sAMAccountName")
                if isinstance(value, list):
                    value = value[0] if value else None
                if value:
                    members.add(str(value))
        except LDAPException as exc:
            raise DirectoryError(f"Listing members of {group_key} failed: {exc}") from exc
        return members

    def _check_available(self, kind: ResourceKind) -> None:
        if kind in UNAVAILABLE_KINDS:
            raise SubsystemUnavailable(f"{kind.value} is not managed over LDAP.")

    def _suffix(self) -> str:
        if self.domain is None:
            raise DirectoryError("Directory client has no domain identity.")
        return self.domain.dn_suffix

    def _root_dse_value(self, name: str) -> str:
        info = self.connection.server.info
        values = info.other.get(name) if info is not None else None
        if not values:
            raise DirectoryError(f"Root DSE does not advertise {name}.")
        return str(values[0])

    def _configuration_dn(self) -> str:
        try:
            return self._root_dse_value("configurationNamingContext")
        except DirectoryError:
            return f"CN=Configuration,{self._suffix()}"

    def _topology_dn(self, kind: ResourceKind, key: str) -> str:
        sites = f"CN=Sites,{self._configuration_dn()}"
        if kind == ResourceKind.SITE:
            return f"CN={escape_rdn(key)},{sites}"
        if kind == ResourceKind.SUBNET:
            return f"CN={escape_rdn(key)},CN=Subnets,{sites}"
        return f"CN={escape_rdn(key)},CN=IP,CN=Inter-Site Transports,{sites}"

    def _account_filter(self, kind: ResourceKind, key: str) -> str:
        escaped = escape_filter_chars(key)
        if kind == ResourceKind.GROUP:
            return f"(&(objectClass=group)(sAMAccountName={escaped}))"
        if kind == ResourceKind.COMPUTER:
            return f"(&(objectClass=computer)(sAMAccountName={escaped}$))"
        if kind == ResourceKind.USER:
            return f"(&(objectCategory=person)(objectClass=user)(sAMAccountName={escaped}))"
        raise DirectoryError(f"Unsupported lookup kind {kind.value}.")

    def _account_dn(self, kind: ResourceKind, key: str) -> str | None:
        ok = self._call(
            "search",
            self._suffix(),
            self._account_filter(kind, key),
            search_scope=SUBTREE,
            attributes=["distinguishedName"],
            size_limit=1,
        )
        if not ok:
            if self.connection.result.get("result") == 0:
                return None
            self._raise_result(f"looking up {kind.value} {key}")
        return self.connection.entries[0].entry_dn if self.connection.entries else None

    def _require_dn(self, kind: ResourceKind, key: str) -> str:
        dn = self._account_dn(kind, key)
        if dn is None:
            raise DirectoryError(f"{kind.value} {key} not found.")
        return dn

    def _dn_exists(self, dn: str) -> bool:
        ok = self._call("search", dn, "(objectClass=*)", search_scope=BASE, attributes=["objectClass"])
        if ok:
            return bool(self.connection.entries)
        if self.connection.result.get("result") in {0, NO_SUCH_OBJECT}:
            return False
        self._raise_result(f"looking up {dn}")

    def _describe(self, resource: Resource, domain: DomainIdentity) -> tuple[str, str, dict[str, Any]]:
        """Return the DN, object class and attributes to add for a resource."""
        if isinstance(resource, Site):
            return self._topology_dn(ResourceKind.SITE, resource.name), "site", _compact(
                {"description": resource.description}
            )
        if isinstance(resource, Subnet):
            site_dn = self._topology_dn(ResourceKind.SITE, resource.site)
            return self._topology_dn(ResourceKind.SUBNET, resource.cidr), "subnet", _compact(
                {"siteObject": site_dn, "location": resource.location}
            )
        if isinstance(resource, SiteLink):
            site_dns = [self._topology_dn(ResourceKind.SITE, site) for site in resource.sites]
            return self._topology_dn(ResourceKind.SITE_LINK, resource.name), "siteLink", {
                "siteList": site_dns,
                "cost": resource.cost,
                "replInterval": SITE_LINK_REPL_INTERVAL,
            }
        if isinstance(resource, OrganizationalUnit):
            return resource.distinguished_name(domain), "organizationalUnit", _compact(
                {"description": resource.description}
            )
        if isinstance(resource, Group):
            return f"CN={escape_rdn(resource.sam_name)},{resource.ou_dn(domain)}", "group", _compact(
                {
                    "sAMAccountName": resource.sam_name,
                    "displayName": resource.display_name,
                    "description": resource.description,
                    "groupType": group_type(resource.scope, resource.category),
                }
            )
        if isinstance(resource, Computer):
            return f"CN={escape_rdn(resource.name)},{resource.ou_dn(domain)}", "computer", _compact(
                {
                    "sAMAccountName": f"{resource.name}$",
                    "dNSHostName": f"{resource.name}.{domain.fqdn}".lower(),
                    "description": resource.description,
                    "userAccountControl": UAC_WORKSTATION_TRUST_ACCOUNT,
                }
            )
        if isinstance(resource, User):
            common_name = resource.display_name or resource.sam_name
            return f"CN={escape_rdn(common_name)},{resource.ou_dn(domain)}", "user", _compact(
                {
                    "sAMAccountName": resource.sam_name,
                    "userPrincipalName": resource.user_principal_name(domain),
                    "givenName": resource.given_name,
                    "sn": resource.surname,
                    "displayName": resource.display_name,
                    "mail": resource.email,
                    "title": resource.title,
                    "department": resource.department,
                    "telephoneNumber": resource.phone,
                    "employeeID": str(resource.employee_id) if resource.employee_id is not None else None,
                    "userAccountControl": UAC_NORMAL_ACCOUNT | UAC_ACCOUNTDISABLE,
                }
            )
        raise SubsystemUnavailable(f"{resource.kind.value} is not managed over LDAP.")

    def _finish_user(self, dn: str, user: User) -> None:
        """Set the initial password, then enable the account if requested."""
        if user.password:
            try:
                ok = self.connection.extend.microsoft.modify_password(dn, user.password)
            except LDAPException as exc:
                raise DirectoryError(f"Setting password for {user.sam_name} failed: {exc}") from exc
            if not ok:
                self._raise_result(f"setting password for {user.sam_name}")
        if user.enabled and user.password:
            ok = self._call("modify", dn, {"userAccountControl": [(MODIFY_REPLACE, [UAC_NORMAL_ACCOUNT])]})
            if not ok:
                self._raise_result(f"enabling {user.sam_name}")
        elif user.enabled:
            LOG.warning("User %s has no password and stays disabled", user.sam_name)

    def _add(self, dn: str, object_class: str, attributes: dict[str, Any]) -> None:
        LOG.debug("Adding %s (%s)", dn, object_class)
        if not self._call("add", dn, object_class, attributes or None):
            self._raise_result(f"adding {dn}")

    def _call(self, operation: str, *args: Any, **kwargs: Any) -> bool:
        try:
            return bool(getattr(self.connection, operation)(*args, **kwargs))
        except LDAPException as exc:
            raise DirectoryError(f"LDAP {operation} failed: {exc}") from exc

    def _raise_result(self, action: str) -> NoReturn:
        result = self.connection.result or {}
        description = result.get("description", "unknown error")
        message = result.get("message", "")
        raise DirectoryError(f"{action} failed: {description} {message}".strip())
