"""
Role registry for specd.

A fixed table of roles. Each role lists its capabilities, the artifact kinds
it reads and may write, and the specification statuses in which the
coordinator may spawn it. The table is built once at import and exposed
read-only, so lookups from any thread need no locking.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from specd.lib.errors import RoleNotFoundError
from specd.store.models import ArtifactKind, SpecStatus


class Capability(Enum):
    READ = "read"
    WRITE_ARTIFACT = "write_artifact"
    MUTATE_DOCUMENT = "mutate_document"
    RUN_CHECKS = "run_checks"
    SPAWN = "spawn"


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    capabilities: frozenset
    reads: frozenset = frozenset()
    writes: frozenset = frozenset()
    rules: tuple = ()
    statuses: frozenset = frozenset()
    priority: int = 100  # Lower spawns first when several roles are legal

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def can_write(self, kind: ArtifactKind) -> bool:
        return Capability.WRITE_ARTIFACT in self.capabilities and kind in self.writes

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "capabilities": sorted(c.value for c in self.capabilities),
            "reads": sorted(k.value for k in self.reads),
            "writes": sorted(k.value for k in self.writes),
            "rules": list(self.rules),
            "statuses": sorted(s.value for s in self.statuses),
            "priority": self.priority,
        }


COORDINATOR = "coordinator"
REVIEW = "review"
DOCUMENTATION = "documentation"
IMPLEMENTATION = "implementation"
VERIFICATION = "verification"

_ROLES = (
    RoleDefinition(
        name=COORDINATOR,
        capabilities=frozenset({Capability.READ, Capability.SPAWN}),
        reads=frozenset(ArtifactKind),
        rules=("single-writer", "no-self-approval"),
    ),
    RoleDefinition(
        name=REVIEW,
        capabilities=frozenset({Capability.READ, Capability.WRITE_ARTIFACT}),
        reads=frozenset({ArtifactKind.REQUIREMENTS, ArtifactKind.LEARNINGS}),
        writes=frozenset({ArtifactKind.LEARNINGS}),
        rules=("review-findings-as-learnings",),
        statuses=frozenset({SpecStatus.DRAFT, SpecStatus.IN_REVIEW}),
        priority=10,
    ),
    RoleDefinition(
        name=DOCUMENTATION,
        capabilities=frozenset({Capability.READ}),
        reads=frozenset({ArtifactKind.REQUIREMENTS, ArtifactKind.LEARNINGS, ArtifactKind.FEATURE}),
        rules=("documentation-matches-code",),
        statuses=frozenset({SpecStatus.APPROVED, SpecStatus.IN_PROGRESS}),
        priority=20,
    ),
    RoleDefinition(
        name=IMPLEMENTATION,
        capabilities=frozenset({
            Capability.READ,
            Capability.WRITE_ARTIFACT,
            Capability.MUTATE_DOCUMENT,
            Capability.RUN_CHECKS,
        }),
        reads=frozenset({
            ArtifactKind.REQUIREMENTS,
            ArtifactKind.LEARNINGS,
            ArtifactKind.FEATURE,
            ArtifactKind.PROGRESS,
        }),
        writes=frozenset({ArtifactKind.PROGRESS, ArtifactKind.FEATURE, ArtifactKind.LEARNINGS}),
        rules=("tasks-in-dependency-order",),
        statuses=frozenset({SpecStatus.APPROVED, SpecStatus.IN_PROGRESS}),
        priority=30,
    ),
    RoleDefinition(
        name=VERIFICATION,
        capabilities=frozenset({
            Capability.READ,
            Capability.WRITE_ARTIFACT,
            Capability.MUTATE_DOCUMENT,
            Capability.RUN_CHECKS,
        }),
        reads=frozenset({ArtifactKind.REQUIREMENTS, ArtifactKind.FEATURE, ArtifactKind.PROGRESS}),
        # progress is listed so the role can remove it, never to write it
        writes=frozenset({ArtifactKind.VERIFICATION, ArtifactKind.REPORT, ArtifactKind.LEARNINGS}),
        rules=("all-checks-pass", "no-transient-artifacts"),
        statuses=frozenset({SpecStatus.VERIFYING}),
        priority=40,
    ),
)

ROLES = MappingProxyType({role.name: role for role in _ROLES})

# Kinds a role may remove through MUTATE_DOCUMENT
REMOVABLE = MappingProxyType({
    IMPLEMENTATION: frozenset({ArtifactKind.PROGRESS}),
    VERIFICATION: frozenset({ArtifactKind.PROGRESS}),
})


class Registry:
    """Read-only view over a role table."""

    def __init__(self, roles=ROLES):
        self._roles = roles

    def resolve(self, role_name: str) -> RoleDefinition:
        """Look up a role by exact name.

        Raises:
            RoleNotFoundError: for any name not in the table
        """
        try:
            return self._roles[role_name]
        except KeyError:
            raise RoleNotFoundError(role_name) from None

    def roles_for(self, status: SpecStatus) -> list[RoleDefinition]:
        """Roles the coordinator may spawn in status, highest priority first."""
        legal = [r for r in self._roles.values()
                 if status in r.statuses and not r.has(Capability.SPAWN)]
        return sorted(legal, key=lambda r: r.priority)


REGISTRY = Registry()


def resolve(role_name: str) -> RoleDefinition:
    return REGISTRY.resolve(role_name)


def roles_for(status: SpecStatus) -> list[RoleDefinition]:
    return REGISTRY.roles_for(status)


def is_legal(role_name: str, status: SpecStatus) -> bool:
    role = ROLES.get(role_name)
    return role is not None and status in role.statuses


def can_remove(role: RoleDefinition, kind: ArtifactKind) -> bool:
    return role.has(Capability.MUTATE_DOCUMENT) and kind in REMOVABLE.get(role.name, frozenset())
