from __future__ import annotations

import pytest

from adlab_ctl.models import (
    ConfigurationError,
    DomainIdentity,
    GpoLink,
    Outcome,
    ResourceKind,
    RunReport,
    SiteLink,
    User,
    join_dn,
    ou_depth,
)


def test_join_dn_appends_suffix(domain: DomainIdentity) -> None:
    assert join_dn("OU=Engineering", domain) == "OU=Engineering,DC=ex,DC=lab"
    assert join_dn("", domain) == "DC=ex,DC=lab"
    assert join_dn("OU=Engineering,dc=EX,dc=LAB", domain) == "OU=Engineering,dc=EX,dc=LAB"


def test_ou_depth_counts_segments() -> None:
    assert ou_depth("") == 0
    assert ou_depth("CN=Users") == 0
    assert ou_depth("OU=B, ou=A,DC=ex,DC=lab") == 2


def test_gpo_link_key_pairs_policy_and_target(domain: DomainIdentity) -> None:
    link = GpoLink(gpo="Baseline", target="OU=Servers")

    assert link.key(domain) == "Baseline@OU=Servers,DC=ex,DC=lab"


def test_user_password_is_hidden_from_repr() -> None:
    user = User(sam_name="jdoe", ou="OU=Staff", password="hunter2")

    assert "hunter2" not in repr(user)


def test_site_link_requires_sites() -> None:
    with pytest.raises(ConfigurationError):
        SiteLink(name="Empty", sites=()).validate()


def test_run_report_summaries(domain: DomainIdentity) -> None:
    report = RunReport(domain=domain, dry_run=False)
    report.add("sites", ResourceKind.SITE, "HQ", Outcome.CREATED)
    report.add("sites", ResourceKind.SITE, "Branch", Outcome.PRESENT)
    report.add("users", ResourceKind.USER, "jdoe", Outcome.FAILED, "boom")

    assert report.counts() == {Outcome.CREATED: 1, Outcome.PRESENT: 1, Outcome.FAILED: 1}
    assert report.stages() == ["sites", "users"]
    assert report.has_failures()
    assert report.has_changes()
    assert report.outcome_of(ResourceKind.SITE, "Branch") == Outcome.PRESENT
    assert report.outcome_of(ResourceKind.SITE, "Nowhere") is None
