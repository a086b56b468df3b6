"""
Error taxonomy for specd.

Every error carries a machine-readable reason code and the CLI exit code
used when it reaches the command line:

- ProtocolError: the request breaks the lifecycle rules. Reject and report,
  never auto-correct.
- CapabilityViolationError: a role attempted something it is not allowed
  to do. Fatal to the session, escalated to the operator.
- ConsistencyError: documentation no longer matches what it describes.
  Always halts the session that found it.
- InfrastructureError: the store or a tool is unavailable. Retried with
  bounded backoff, then the specification is marked stalled.
"""

from specd.lib import constants


class SpecdError(Exception):
    """Base class for all specd errors."""
    reason = "ERROR"
    exit_code = constants.EXIT_ERROR

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": str(self)}


class ProtocolError(SpecdError):
    """A request violated the orchestration protocol."""
    reason = "PROTOCOL_ERROR"


class NotFoundError(ProtocolError):
    """A specification, task, artifact or role does not exist."""
    reason = "NOT_FOUND"
    exit_code = constants.EXIT_NOT_FOUND


class RoleNotFoundError(NotFoundError):
    """Registry lookup for an unknown role name."""
    reason = "ROLE_NOT_FOUND"

    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"Unknown role: {role_name}")


class InvalidTransitionError(ProtocolError):
    """Transition is not in the state graph, or the source status is stale."""
    reason = "INVALID_TRANSITION"
    exit_code = constants.EXIT_INVALID_TRANSITION

    def __init__(self, spec_id: str, from_status: str, to_status: str, detail: str = ""):
        self.spec_id = spec_id
        self.from_status = from_status
        self.to_status = to_status
        self.detail = detail
        super().__init__(
            f"Invalid transition: {from_status} -> {to_status} (specification: {spec_id})"
            + (f": {detail}" if detail else "")
        )


class MissingArtifactError(ProtocolError):
    """Artifacts (or task completions) required for a transition are absent."""
    reason = "MISSING_ARTIFACT"
    exit_code = constants.EXIT_MISSING_ARTIFACT

    def __init__(self, spec_id: str, to_status: str, missing: list[str]):
        self.spec_id = spec_id
        self.to_status = to_status
        self.missing = list(missing)
        super().__init__(
            f"Cannot move {spec_id} to {to_status}, missing: {', '.join(self.missing)}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["missing"] = self.missing
        return data


class CyclicDependencyError(ProtocolError):
    """A dependency edge would close a cycle."""
    reason = "CYCLIC_DEPENDENCY"
    exit_code = constants.EXIT_CYCLIC_DEPENDENCY

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class DuplicateIdError(ProtocolError):
    """A generated identifier collided with an existing one."""
    reason = "DUPLICATE_ID"
    exit_code = constants.EXIT_DUPLICATE_ID


class ImmutableSpecificationError(ProtocolError):
    """Completed and locked specifications accept no further writes."""
    reason = "IMMUTABLE"
    exit_code = constants.EXIT_IMMUTABLE

    def __init__(self, spec_id: str, status: str):
        self.spec_id = spec_id
        self.status = status
        super().__init__(
            f"Specification {spec_id} is {status} and cannot be modified; "
            f"create a new specification that depends on it"
        )


class UnmetDependencyError(ProtocolError):
    """A task was marked done before the tasks it depends on."""
    reason = "UNMET_DEPENDENCY"

    def __init__(self, task_id: str, pending: list[str]):
        self.task_id = task_id
        self.pending = list(pending)
        super().__init__(f"Task {task_id} depends on unfinished tasks: {', '.join(self.pending)}")


class InvalidProposalError(ProtocolError):
    """A session proposed a change the store cannot apply."""
    reason = "INVALID_PROPOSAL"


class CapabilityViolationError(SpecdError):
    """A role attempted an action outside its capability set."""
    reason = "CAPABILITY_VIOLATION"
    exit_code = constants.EXIT_CAPABILITY_VIOLATION

    def __init__(self, role: str, action: str, detail: str = ""):
        self.role = role
        self.action = action
        self.detail = detail
        super().__init__(
            f"Role '{role}' is not permitted to {action}" + (f": {detail}" if detail else "")
        )

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "message": str(self),
            "role": self.role,
            "action": self.action,
            "detail": self.detail,
        }


class ConsistencyError(SpecdError):
    """Documentation and the facts it references disagree."""
    reason = "CONSISTENCY"
    exit_code = constants.EXIT_STOP

    def __init__(self, mismatches: list, message: str = ""):
        self.mismatches = list(mismatches)
        super().__init__(message or f"{len(self.mismatches)} documentation mismatch(es)")


class InfrastructureError(SpecdError):
    """Store or tool unavailable; safe to retry."""
    reason = "INFRASTRUCTURE"
    exit_code = constants.EXIT_STALLED


class LeaseHeldError(SpecdError):
    """Another session already holds the specification lease."""
    reason = "BUSY"
    exit_code = constants.EXIT_BUSY


class SessionCancelled(SpecdError):
    """The session was cancelled; its work is discarded."""
    reason = "CANCELLED"
