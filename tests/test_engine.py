from __future__ import annotations

import logging

import pytest

from adlab_ctl.engine import Reconciler
from adlab_ctl.models import (
    DesiredState,
    DomainIdentity,
    Gpo,
    Group,
    OrganizationalUnit,
    Outcome,
    PreconditionError,
    ResourceKind,
    User,
)
from tests.support.fake_directory import FakeDirectory

UNAVAILABLE = (ResourceKind.DNS_ZONE, ResourceKind.DNS_FORWARDER, ResourceKind.GPO, ResourceKind.GPO_LINK)


def test_apply_creates_everything_missing(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory()

    report = Reconciler(directory).apply(desired, domain)

    assert not report.has_failures()
    assert report.counts()[Outcome.CREATED] == 14
    assert report.outcome_of(ResourceKind.MEMBERSHIP, "jdoe->Engineering") == Outcome.ADDED
    assert directory.has(ResourceKind.OU, "OU=Backend,OU=Engineering,DC=ex,DC=lab")
    assert "jdoe" in directory.list_effective_members("Engineering")


def test_second_run_is_a_no_op(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory()
    Reconciler(directory).apply(desired, domain)
    directory.calls.clear()

    report = Reconciler(directory).apply(desired, domain)

    outcomes = {record.outcome for record in report.records}
    assert outcomes == {Outcome.PRESENT, Outcome.ALREADY_MEMBER}
    assert not report.has_changes()
    assert directory.mutations() == []


def test_stage_order_is_recorded(desired: DesiredState, domain: DomainIdentity) -> None:
    report = Reconciler(FakeDirectory()).apply(desired, domain)

    assert report.stages() == [
        "sites",
        "subnets",
        "site-links",
        "ous",
        "groups",
        "services",
        "policies",
        "computers",
        "users",
        "memberships",
    ]
    ou_keys = [record.key for record in report.iter_stage("ous")]
    assert ou_keys.index("OU=Engineering,DC=ex,DC=lab") < ou_keys.index("OU=Backend,OU=Engineering,DC=ex,DC=lab")


def test_dry_run_never_mutates(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory()

    report = Reconciler(directory).plan(desired, domain)

    assert report.dry_run is True
    assert report.counts()[Outcome.PLANNED] == 15
    assert directory.mutations() == []
    assert not directory.objects[ResourceKind.OU]
    assert all(call[-1] is True for call in directory.calls if call[0] in {"create", "add_membership"})


def test_dry_run_classification_matches_real_run(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory().seed(ResourceKind.SITE, "HQ").seed(ResourceKind.OU, "OU=Workstations,DC=ex,DC=lab")

    plan = Reconciler(directory).plan(desired, domain)
    applied = Reconciler(directory).apply(desired, domain)

    def classify(outcome: Outcome) -> str:
        return "create" if outcome in {Outcome.PLANNED, Outcome.CREATED, Outcome.ADDED} else outcome.value

    assert [(r.key, classify(r.outcome)) for r in plan.records] == [
        (r.key, classify(r.outcome)) for r in applied.records
    ]


def test_unavailable_subsystem_skips_stage_with_one_warning(
    desired: DesiredState,
    domain: DomainIdentity,
    caplog: pytest.LogCaptureFixture,
) -> None:
    directory = FakeDirectory(unavailable=UNAVAILABLE)

    with caplog.at_level(logging.WARNING, logger="adlab_ctl"):
        report = Reconciler(directory).apply(desired, domain)

    services = list(report.iter_stage("services"))
    assert {record.outcome for record in services} == {Outcome.UNAVAILABLE}
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING and "services" in r.getMessage()]
    assert len(warnings) == 1
    assert report.outcome_of(ResourceKind.COMPUTER, "WS01") == Outcome.CREATED
    assert not report.has_failures()


def test_unavailable_raised_mid_stage_skips_rest_of_kind(domain: DomainIdentity) -> None:
    class LateUnavailable(FakeDirectory):
        def is_available(self, kind: ResourceKind) -> bool:
            return True

    directory = LateUnavailable(unavailable=[ResourceKind.GPO])
    desired = DesiredState(gpos=[Gpo(name="A"), Gpo(name="B")])

    report = Reconciler(directory).apply(desired, domain)

    assert [r.outcome for r in report.iter_stage("policies")] == [Outcome.UNAVAILABLE, Outcome.UNAVAILABLE]
    assert len([c for c in directory.calls if c[0] == "exists"]) == 1


def test_existence_failure_is_recorded_and_stage_continues(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory(fail_exists=[(ResourceKind.SITE, "HQ")])

    report = Reconciler(directory).apply(desired, domain)

    assert report.outcome_of(ResourceKind.SITE, "HQ") == Outcome.FAILED
    assert report.outcome_of(ResourceKind.SITE, "Branch") == Outcome.CREATED
    assert report.outcome_of(ResourceKind.SUBNET, "10.0.0.0/24") == Outcome.CREATED
    assert ("create", ResourceKind.SITE, "HQ", False) not in directory.calls


def test_failed_site_blocks_dependents_only(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory(fail_create=[(ResourceKind.SITE, "HQ")])

    report = Reconciler(directory).apply(desired, domain)

    assert report.outcome_of(ResourceKind.SUBNET, "10.0.0.0/24") == Outcome.FAILED
    assert report.outcome_of(ResourceKind.SITE_LINK, "HQ-Branch") == Outcome.FAILED
    assert report.outcome_of(ResourceKind.OU, "OU=Engineering,DC=ex,DC=lab") == Outcome.CREATED


def test_child_ou_is_not_attempted_after_parent_failure(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory(fail_create=[(ResourceKind.OU, "OU=Engineering,DC=ex,DC=lab")])

    report = Reconciler(directory).apply(desired, domain)

    backend = "OU=Backend,OU=Engineering,DC=ex,DC=lab"
    assert report.outcome_of(ResourceKind.OU, backend) == Outcome.FAILED
    assert ("create", ResourceKind.OU, backend, False) not in directory.calls
    assert report.outcome_of(ResourceKind.GROUP, "Engineering") == Outcome.FAILED
    assert report.outcome_of(ResourceKind.USER, "jdoe") == Outcome.FAILED
    assert report.outcome_of(ResourceKind.COMPUTER, "WS01") == Outcome.CREATED


def test_account_in_unknown_ou_fails_without_create(domain: DomainIdentity) -> None:
    directory = FakeDirectory()
    desired = DesiredState(groups=[Group(sam_name="Ops", ou="OU=Nowhere")])

    report = Reconciler(directory).apply(desired, domain)

    record = next(report.iter_stage("groups"))
    assert record.outcome == Outcome.FAILED
    assert "OU=Nowhere,DC=ex,DC=lab not found" in (record.error or "")
    assert not [call for call in directory.calls if call[0] == "create"]


def test_preexisting_parent_ou_is_accepted(domain: DomainIdentity) -> None:
    directory = FakeDirectory().seed(ResourceKind.OU, "OU=Legacy,DC=ex,DC=lab")
    desired = DesiredState(ous=[OrganizationalUnit(name="Archive", path="OU=Legacy,DC=ex,DC=lab")])

    report = Reconciler(directory).apply(desired, domain)

    assert report.outcome_of(ResourceKind.OU, "OU=Archive,OU=Legacy,DC=ex,DC=lab") == Outcome.CREATED


def test_configuration_error_rejects_only_its_stage(desired: DesiredState, domain: DomainIdentity) -> None:
    desired.ous.append(OrganizationalUnit(name="Engineering"))
    directory = FakeDirectory()

    report = Reconciler(directory).apply(desired, domain)

    ous = list(report.iter_stage("ous"))
    assert {record.outcome for record in ous} == {Outcome.INVALID}
    assert "Duplicate" in (ous[0].error or "")
    assert not [call for call in directory.calls if call[0] == "create" and call[1] == ResourceKind.OU]
    assert report.outcome_of(ResourceKind.SITE, "HQ") == Outcome.CREATED
    assert report.outcome_of(ResourceKind.GROUP, "Engineering") == Outcome.FAILED


def test_rejected_user_stage_rejects_memberships(domain: DomainIdentity) -> None:
    directory = FakeDirectory().seed(ResourceKind.GROUP, "Staff")
    desired = DesiredState(users=[User(sam_name="", ou="", groups=("Staff",))])

    report = Reconciler(directory).apply(desired, domain)

    assert [r.outcome for r in report.iter_stage("memberships")] == [Outcome.INVALID]
    assert directory.mutations() == []


def test_objects_outside_desired_state_are_untouched(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory().seed(ResourceKind.USER, "legacy").seed(ResourceKind.GROUP, "Engineering")
    directory.seed_member("Engineering", "legacy")

    Reconciler(directory).apply(desired, domain)

    assert directory.has(ResourceKind.USER, "legacy")
    assert "legacy" in directory.list_effective_members("Engineering")
    assert {call[0] for call in directory.calls} <= {"exists", "create", "add_membership", "list_effective_members"}


def test_missing_desired_state_is_a_precondition_error(domain: DomainIdentity) -> None:
    directory = FakeDirectory()

    with pytest.raises(PreconditionError):
        Reconciler(directory).apply(None, domain)

    assert directory.calls == []


def test_unresolved_domain_is_a_precondition_error(desired: DesiredState) -> None:
    directory = FakeDirectory()

    with pytest.raises(PreconditionError):
        Reconciler(directory).apply(desired, DomainIdentity(fqdn="ex.lab", dn_suffix=""))

    assert directory.calls == []


def test_cancellation_is_checked_between_stages(desired: DesiredState, domain: DomainIdentity) -> None:
    directory = FakeDirectory()
    checks: list[int] = []

    def should_stop() -> bool:
        checks.append(1)
        return len(checks) > 4

    report = Reconciler(directory, should_stop=should_stop).apply(desired, domain)

    assert report.cancelled is True
    assert report.stages() == ["sites", "subnets", "site-links", "ous"]
