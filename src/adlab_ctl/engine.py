"""Stage-by-stage reconciliation of desired state against a directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from .directory import DirectoryClient
from .membership import MembershipReconciler
from .models import (
    Computer,
    DesiredState,
    DirectoryError,
    DomainIdentity,
    GpoLink,
    Group,
    OrganizationalUnit,
    Outcome,
    PreconditionError,
    Resource,
    ResourceKind,
    RunReport,
    SiteLink,
    Subnet,
    SubsystemUnavailable,
    User,
)
from .resolver import MEMBERSHIPS, USERS, Stage, resolve_stages

LOG = logging.getLogger("adlab_ctl")


@dataclass
class RunState:
    """Identities resolved or failed so far in the current run."""

    known: set[tuple[ResourceKind, str]] = field(default_factory=set)
    planned: set[tuple[ResourceKind, str]] = field(default_factory=set)
    failed: set[tuple[ResourceKind, str]] = field(default_factory=set)

    def mark(self, kind: ResourceKind, key: str, outcome: Outcome) -> None:
        identity = (kind, key.lower())
        if outcome in {Outcome.PRESENT, Outcome.CREATED, Outcome.PLANNED}:
            self.known.add(identity)
        if outcome == Outcome.PLANNED:
            self.planned.add(identity)

    def mark_failed(self, kind: ResourceKind, key: str) -> None:
        """Remember a resource that could not be created so dependents are not attempted."""
        self.failed.add((kind, key.lower()))


class Reconciler:
    """Creates what is missing, skips what exists, never touches the rest."""

    def __init__(
        self,
        client: DirectoryClient,
        should_stop: Callable[[], bool] | None = None,
    ):
        """Store the directory client and an optional cancellation check."""
        self.client = client
        self.should_stop = should_stop

    def plan(self, desired: DesiredState | None, domain: DomainIdentity) -> RunReport:
        """Run without mutating the directory."""
        return self.run(desired, domain, dry_run=True)

    def apply(self, desired: DesiredState | None, domain: DomainIdentity) -> RunReport:
        """Run and create every missing object."""
        return self.run(desired, domain, dry_run=False)

    def run(self, desired: DesiredState | None, domain: DomainIdentity | None, dry_run: bool) -> RunReport:
        """Reconcile every stage in order and return the outcome log."""
        if desired is None:
            raise PreconditionError("Desired state is not available.")
        if domain is None or not domain.is_resolved():
            raise PreconditionError("Domain identity (FQDN and DN suffix) is not resolved.")

        report = RunReport(domain=domain, dry_run=dry_run)
        state = RunState()
        stages = resolve_stages(desired, domain)
        mode = "Planning" if dry_run else "Applying"
        LOG.info("%s %s resources for %s", mode, desired.total(), domain.fqdn)

        users_stage: Stage | None = None
        for stage in stages:
            if self._cancelled(report, stage.name):
                return report
            self._apply_stage(stage, report, state, dry_run)
            if stage.name == USERS:
                users_stage = stage

        if self._cancelled(report, MEMBERSHIPS):
            return report
        membership = MembershipReconciler(self.client)
        if users_stage is not None and not users_stage.is_valid():
            membership.reject(users_stage.resources, domain, report, str(users_stage.error))
        else:
            membership.run(desired.users, domain, report, dry_run=dry_run, known=state.known, planned=state.planned)
        LOG.info("Run finished: %s", _summary(report))
        return report

    def _cancelled(self, report: RunReport, stage_name: str) -> bool:
        if self.should_stop is not None and self.should_stop():
            LOG.warning("Run cancelled before stage %s", stage_name)
            report.cancelled = True
            return True
        return False

    def _apply_stage(self, stage: Stage, report: RunReport, state: RunState, dry_run: bool) -> None:
        """Apply one stage; configuration errors reject it as a whole."""
        domain = report.domain
        if not stage.resources:
            LOG.debug("Stage %s has nothing to do", stage.name)
            return
        if not stage.is_valid():
            LOG.error("Stage %s rejected: %s", stage.name, stage.error)
            for resource in stage.resources:
                _record(report, stage.name, resource.kind, resource.key(domain), Outcome.INVALID, str(stage.error))
            return

        kinds = list(dict.fromkeys(resource.kind for resource in stage.resources))
        unavailable = {kind for kind in kinds if not self.client.is_available(kind)}
        warned = False
        if unavailable:
            _warn_unavailable(stage.name, unavailable)
            warned = True

        for resource in stage.resources:
            key = resource.key(domain)
            if resource.kind in unavailable:
                _record(report, stage.name, resource.kind, key, Outcome.UNAVAILABLE)
                continue
            try:
                outcome, error = self._apply_resource(resource, key, domain, state, dry_run)
            except SubsystemUnavailable as exc:
                unavailable.add(resource.kind)
                if not warned:
                    _warn_unavailable(stage.name, unavailable, exc)
                    warned = True
                _record(report, stage.name, resource.kind, key, Outcome.UNAVAILABLE, str(exc))
                continue
            state.mark(resource.kind, key, outcome)
            _record(report, stage.name, resource.kind, key, outcome, error)

    def _apply_resource(
        self,
        resource: Resource,
        key: str,
        domain: DomainIdentity,
        state: RunState,
        dry_run: bool,
    ) -> tuple[Outcome, str | None]:
        """Walk one resource through Unchecked -> Present | Created | Failed."""
        kind = resource.kind
        try:
            if self.client.exists(kind, key):
                return Outcome.PRESENT, None
        except SubsystemUnavailable:
            raise
        except DirectoryError as exc:
            return Outcome.FAILED, f"existence check failed: {exc}"

        problem = self._dependency_problem(resource, domain, state)
        if problem:
            state.mark_failed(kind, key)
            return Outcome.FAILED, problem

        LOG.debug("Creating %s %s (dry_run=%s)", kind.value, key, dry_run)
        try:
            self.client.create(kind, resource, domain, dry_run)
        except SubsystemUnavailable:
            raise
        except DirectoryError as exc:
            state.mark_failed(kind, key)
            return Outcome.FAILED, str(exc)
        return (Outcome.PLANNED if dry_run else Outcome.CREATED), None

    def _dependency_problem(self, resource: Resource, domain: DomainIdentity, state: RunState) -> str | None:
        """Return why a resource cannot be created yet, or None."""
        if isinstance(resource, OrganizationalUnit):
            return self._container_problem(resource.parent_dn(domain), domain, state)
        if isinstance(resource, (Group, Computer, User)):
            return self._container_problem(resource.ou_dn(domain), domain, state)
        if isinstance(resource, GpoLink):
            if (ResourceKind.GPO, resource.gpo.lower()) in state.failed:
                return f"policy {resource.gpo} was not created"
            return self._container_problem(resource.target_dn(domain), domain, state)
        if isinstance(resource, Subnet):
            return _failed_site(resource.site, state)
        if isinstance(resource, SiteLink):
            for site in resource.sites:
                problem = _failed_site(site, state)
                if problem:
                    return problem
        return None

    def _container_problem(self, dn: str, domain: DomainIdentity, state: RunState) -> str | None:
        lowered = dn.lower()
        if lowered == domain.dn_suffix.lower():
            return None
        identity = (ResourceKind.OU, lowered)
        if identity in state.failed:
            return f"parent OU {dn} was not created"
        if identity in state.known:
            return None
        try:
            if self.client.exists(ResourceKind.OU, dn):
                state.known.add(identity)
                return None
        except DirectoryError as exc:
            return f"could not verify parent OU {dn}: {exc}"
        return f"parent OU {dn} not found"


def _failed_site(site: str, state: RunState) -> str | None:
    if (ResourceKind.SITE, site.lower()) in state.failed:
        return f"site {site} was not created"
    return None


def _record(
    report: RunReport,
    stage: str,
    kind: ResourceKind,
    key: str,
    outcome: Outcome,
    error: str | None = None,
) -> None:
    """Append to the outcome log and mirror it to the log."""
    report.add(stage, kind, key, outcome, error)
    if outcome in {Outcome.FAILED, Outcome.INVALID, Outcome.NOT_FOUND}:
        LOG.error("[%s] %s %s: %s (%s)", stage, kind.value, key, outcome.value, error)
    else:
        LOG.info("[%s] %s %s: %s", stage, kind.value, key, outcome.value)


def _warn_unavailable(stage: str, kinds: set[ResourceKind], exc: Exception | None = None) -> None:
    names = ", ".join(sorted(kind.value for kind in kinds))
    if exc is None:
        LOG.warning("Skipping %s in stage %s: subsystem unavailable", names, stage)
    else:
        LOG.warning("Skipping %s in stage %s: %s", names, stage, exc)


def _summary(report: RunReport) -> str:
    counts = report.counts()
    if not counts:
        return "nothing to do"
    return ", ".join(f"{outcome.value}={count}" for outcome, count in sorted(counts.items(), key=lambda i: i[0].value))


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
