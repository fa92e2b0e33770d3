"""Adds missing user-to-group edges once both sides exist."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .directory import DirectoryClient
from .models import DirectoryError, DomainIdentity, Outcome, Resource, ResourceKind, RunReport, User
from .resolver import MEMBERSHIPS as STAGE

LOG = logging.getLogger("adlab_ctl")


def edge_key(user: str, group: str) -> str:
    """Return the outcome-log key of a membership edge."""
    return f"{user}->{group}"


class MembershipReconciler:
    """Treats each user's group list as a floor; never removes an edge."""

    def __init__(self, client: DirectoryClient):
        self.client = client
        self._members: dict[str, set[str]] = {}

    def run(
        self,
        users: Sequence[User],
        domain: DomainIdentity,
        report: RunReport,
        dry_run: bool,
        known: set[tuple[ResourceKind, str]] | None = None,
        planned: set[tuple[ResourceKind, str]] | None = None,
    ) -> None:
        """Reconcile the memberships declared by `users`.

        `known` holds identities already confirmed in this run and `planned`
        those that only exist in a dry-run plan; both are lowercase keys.
        """
        known = known or set()
        planned = planned or set()
        self._members = {}
        for user in users:
            if not user.groups:
                continue
            user_key = user.key(domain)
            for group_key in dict.fromkeys(user.groups):
                outcome, error = self._reconcile_edge(user_key, group_key, dry_run, known, planned)
                self._record(report, edge_key(user_key, group_key), outcome, error)

    def reject(self, users: Iterable[Resource], domain: DomainIdentity, report: RunReport, reason: str) -> None:
        """Mark every declared edge invalid because the user stage was rejected."""
        for user in users:
            if not isinstance(user, User):
                continue
            for group_key in dict.fromkeys(user.groups):
                self._record(report, edge_key(user.key(domain), group_key), Outcome.INVALID, reason)

    def _reconcile_edge(
        self,
        user_key: str,
        group_key: str,
        dry_run: bool,
        known: set[tuple[ResourceKind, str]],
        planned: set[tuple[ResourceKind, str]],
    ) -> tuple[Outcome, str | None]:
        try:
            if not self._resolves(ResourceKind.USER, user_key, known):
                return Outcome.NOT_FOUND, f"user {user_key} not found"
            if not self._resolves(ResourceKind.GROUP, group_key, known):
                return Outcome.NOT_FOUND, f"group {group_key} not found"
            members = self._effective_members(group_key, planned)
        except DirectoryError as exc:
            return Outcome.FAILED, str(exc)

        if user_key.lower() in members:
            return Outcome.ALREADY_MEMBER, None

        try:
            self.client.add_membership(group_key, user_key, dry_run)
        except DirectoryError as exc:
            return Outcome.FAILED, str(exc)
        members.add(user_key.lower())
        return (Outcome.PLANNED if dry_run else Outcome.ADDED), None

    def _resolves(self, kind: ResourceKind, key: str, known: set[tuple[ResourceKind, str]]) -> bool:
        if (kind, key.lower()) in known:
            return True
        found = self.client.exists(kind, key)
        if found:
            known.add((kind, key.lower()))
        return found

    def _effective_members(self, group_key: str, planned: set[tuple[ResourceKind, str]]) -> set[str]:
        """Return cached recursive members, lowercased."""
        cache_key = group_key.lower()
        if cache_key not in self._members:
            if (ResourceKind.GROUP, cache_key) in planned:
                self._members[cache_key] = set()
            else:
                members = self.client.list_effective_members(group_key)
                self._members[cache_key] = {member.lower() for member in members}
        return self._members[cache_key]

    @staticmethod
    def _record(report: RunReport, key: str, outcome: Outcome, error: str | None) -> None:
        report.add(STAGE, ResourceKind.MEMBERSHIP, key, outcome, error)
        if error:
            LOG.error("[%s] %s: %s (%s)", STAGE, key, outcome.value, error)
        else:
            LOG.info("[%s] %s: %s", STAGE, key, outcome.value)
