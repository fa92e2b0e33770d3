from __future__ import annotations

import pytest

from adlab_ctl.models import (
    Computer,
    DesiredState,
    DnsForwarder,
    DnsZone,
    DomainIdentity,
    Gpo,
    GpoLink,
    Group,
    OrganizationalUnit,
    Site,
    SiteLink,
    Subnet,
    User,
)
from tests.support.fake_directory import FakeDirectory


@pytest.fixture
def domain() -> DomainIdentity:
    return DomainIdentity(fqdn="ex.lab", dn_suffix="DC=ex,DC=lab")


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def desired() -> DesiredState:
    """A small exercise touching every kind."""
    return DesiredState(
        sites=[Site(name="HQ"), Site(name="Branch")],
        subnets=[Subnet(cidr="10.0.0.0/24", site="HQ", location="Building A")],
        site_links=[SiteLink(name="HQ-Branch", sites=("HQ", "Branch"), cost=50)],
        ous=[
            OrganizationalUnit(name="Backend", path="OU=Engineering"),
            OrganizationalUnit(name="Engineering"),
            OrganizationalUnit(name="Workstations"),
        ],
        groups=[Group(sam_name="Engineering", ou="OU=Engineering", scope="Global")],
        dns_zones=[DnsZone(name="corp.ex.lab")],
        dns_forwarders=[DnsForwarder(address="9.9.9.9")],
        gpos=[Gpo(name="Baseline")],
        gpo_links=[GpoLink(gpo="Baseline", target="OU=Engineering")],
        computers=[Computer(name="WS01", ou="OU=Workstations")],
        users=[
            User(
                sam_name="jdoe",
                ou="OU=Backend,OU=Engineering",
                employee_id=1001,
                given_name="Jane",
                surname="Doe",
                password="S3cure!pass",
                groups=("Engineering",),
            )
        ],
    )
