"""Capabilities the engine requires from a backing directory service."""

from __future__ import annotations

import abc

from .models import DomainIdentity, Resource, ResourceKind


class DirectoryClient(abc.ABC):
    """Existence lookup, creation and membership against a directory.

    Implementations raise `DirectoryError` for a failed operation and
    `SubsystemUnavailable` when the capability behind a kind is not
    provisioned. Nothing here ever deletes or modifies an existing object.
    """

    def is_available(self, kind: ResourceKind) -> bool:
        """Return False when the subsystem behind `kind` is not provisioned."""
        return True

    @abc.abstractmethod
    def exists(self, kind: ResourceKind, key: str) -> bool:
        """Return True when an object with this identity key exists."""

    @abc.abstractmethod
    def create(self, kind: ResourceKind, resource: Resource, domain: DomainIdentity, dry_run: bool) -> None:
        """Create the object, or only check preconditions when `dry_run` is set."""

    @abc.abstractmethod
    def add_membership(self, group_key: str, member_key: str, dry_run: bool) -> None:
        """Add `member_key` to `group_key`."""

    @abc.abstractmethod
    def list_effective_members(self, group_key: str) -> set[str]:
        """Return member keys of a group, nested members included."""
