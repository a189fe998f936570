"""Reconciliation contract shared by every object kind.

Each kind has a Reconciler exposing check/create/read/update/delete/diff
for the orchestrator. The orchestrator supplies declared inputs, the
prior state and a simulate-only flag; the reconciler validates, talks to
Dex through the injected IdentityClient and returns the new state.

FLOW (create/update):
1. Parse + validate declared inputs (simulate included)
2. Immutability checks against the prior state (update only)
3. Simulate: return state mirroring the declared inputs, no RPC
4. Otherwise encode and call Dex with the configured deadline

SECURITY: Errors carry object ids and RPC status only. Secret values are
never part of an exception message or a log record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import ValidationError

from .config import Config
from .dex_client import DexError, DexNotFoundError, IdentityClient
from .diff import DiffResult, diff_objects
from .models import DeclaredObject
from .validation import (
    CheckResult,
    ValidationFailedError,
    apply_defaults,
    check,
    check_immutable,
    parse_failures,
    validate,
)

logger = logging.getLogger(__name__)

SpecT = TypeVar("SpecT", bound=DeclaredObject)
ResultT = TypeVar("ResultT")


# =============================================================================
# Errors
# =============================================================================


class ReconcileError(Exception):
    """Base error for reconciliation failures."""

    pass


class RemoteOperationError(ReconcileError):
    """A Dex RPC failed. The DexError is chained as __cause__."""

    def __init__(self, operation: str, kind: str, object_id: str, cause: Exception) -> None:
        self.operation = operation
        self.kind = kind
        self.object_id = object_id
        super().__init__(f'dex {operation} {kind} "{object_id}": {cause}')


class AdoptionError(RemoteOperationError):
    """Create reported already-exists but the object could not be read back."""

    pass


class DeleteVerificationError(ReconcileError):
    """The object is still present after a successful delete, or could not be verified."""

    def __init__(self, kind: str, object_id: str, reason: str) -> None:
        self.kind = kind
        self.object_id = object_id
        super().__init__(f'{kind} "{object_id}" delete not verified: {reason}')


# =============================================================================
# Results
# =============================================================================


@dataclass
class CreateResult(Generic[SpecT]):
    id: str
    state: SpecT
    adopted: bool = False


@dataclass
class ReadResult(Generic[SpecT]):
    """Read outcome: inputs are the declared view, state adds computed fields."""

    id: str
    inputs: SpecT
    state: SpecT


@dataclass
class UpdateResult(Generic[SpecT]):
    state: SpecT
    changed: list[str] = field(default_factory=list)


# =============================================================================
# Base Reconciler
# =============================================================================


class Reconciler(Generic[SpecT]):
    """Base reconciler for one object kind.

    Subclasses set SPEC_CLASS/STATE_CLASS and implement the remote parts:
    _create_remote, _read_remote, _update_remote, _delete_remote.

    Reconcilers keep no per-call state, so one instance can serve
    concurrent calls for different ids.
    """

    SPEC_CLASS: ClassVar[type[DeclaredObject]]
    STATE_CLASS: ClassVar[type[DeclaredObject]]

    def __init__(self, client: IdentityClient, config: Config) -> None:
        self.client = client
        self.config = config

    @property
    def kind(self) -> str:
        return self.SPEC_CLASS.KIND

    @property
    def timeout(self) -> float:
        return float(self.config.timeout_seconds)

    # -------------------------------------------------------------------------
    # Input coercion
    # -------------------------------------------------------------------------

    def parse(self, declared: SpecT | Mapping[str, Any]) -> SpecT:
        """Accept a model or raw inputs keyed by external names.

        Raises:
            ValidationFailedError: If raw inputs do not parse.
        """
        if isinstance(declared, self.SPEC_CLASS):
            return declared  # type: ignore[return-value]
        if isinstance(declared, DeclaredObject):
            declared = declared.model_dump(by_alias=True)
        try:
            return self.SPEC_CLASS.model_validate(dict(declared))  # type: ignore[return-value]
        except ValidationError as e:
            raise ValidationFailedError(parse_failures(self.SPEC_CLASS, declared, e)) from e

    def parse_state(self, state: SpecT | Mapping[str, Any] | None) -> SpecT | None:
        if state is None:
            return None
        if isinstance(state, self.STATE_CLASS):
            return state  # type: ignore[return-value]
        if isinstance(state, DeclaredObject):
            state = state.model_dump(by_alias=True)
        try:
            return self.STATE_CLASS.model_validate(dict(state))  # type: ignore[return-value]
        except ValidationError as e:
            raise ReconcileError(f"{self.kind}: prior state is malformed: {e.error_count()} errors") from e

    def to_state(self, declared: DeclaredObject, **extra: Any) -> SpecT:
        """Build a state model mirroring declared inputs."""
        values = {name: getattr(declared, name) for name in type(declared).model_fields}
        values.update(extra)
        return self.STATE_CLASS.model_validate(values)  # type: ignore[return-value]

    # -------------------------------------------------------------------------
    # Remote call wrapper
    # -------------------------------------------------------------------------

    def _call(
        self,
        operation: str,
        object_id: str,
        fn: Callable[..., ResultT],
        *args: Any,
        missing_ok: bool = False,
        error_class: type[RemoteOperationError] = RemoteOperationError,
    ) -> ResultT | None:
        """Invoke an IdentityClient method with the configured deadline.

        Args:
            operation: Operation name used in the error message.
            object_id: Id of the object the call is about.
            fn: Bound IdentityClient method.
            *args: Positional arguments for fn.
            missing_ok: Return None instead of raising on DexNotFoundError.
            error_class: RemoteOperationError subclass to raise.

        Raises:
            RemoteOperationError: Wrapping the DexError, which stays chained.
        """
        try:
            return fn(*args, timeout=self.timeout)
        except DexError as e:
            if missing_ok and isinstance(e, DexNotFoundError):
                return None
            logger.warning(
                "Dex call failed",
                extra={
                    "operation": operation,
                    "kind": self.kind,
                    "object_id": object_id,
                    "error_type": type(e).__name__,
                    "code": e.code,
                },
            )
            raise error_class(operation, self.kind, object_id, e) from e

    def _call_found(
        self, operation: str, object_id: str, fn: Callable[..., None], *args: Any
    ) -> bool:
        """_call for methods without a result. False when the object was absent."""

        def acknowledged(*call_args: Any, timeout: float) -> bool:
            fn(*call_args, timeout=timeout)
            return True

        return bool(self._call(operation, object_id, acknowledged, *args, missing_ok=True))

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def check(self, raw_inputs: Mapping[str, Any]) -> CheckResult:
        """Parse, validate and default inputs. Never raises for bad input."""
        return check(self.kind, raw_inputs)

    def create(
        self, declared: SpecT | Mapping[str, Any], simulate_only: bool = False
    ) -> CreateResult[SpecT]:
        """Create the object, adopting it when it already exists remotely.

        Raises:
            ValidationFailedError: If the declared inputs are invalid.
            RemoteOperationError: If a Dex call fails.
            AdoptionError: If Dex reports already-exists but the read finds nothing.
        """
        raw_spec = self.parse(declared)
        spec = validate(raw_spec)

        if simulate_only:
            logger.debug(
                "Simulated create", extra={"kind": self.kind, "object_id": spec.id}
            )
            return CreateResult(id=spec.id, state=self.to_state(raw_spec))

        state, already_exists = self._create_remote(spec)
        if not already_exists:
            logger.info("Created object", extra={"kind": self.kind, "object_id": spec.id})
            return CreateResult(id=spec.id, state=state)

        logger.info(
            "Object already exists, adopting",
            extra={"kind": self.kind, "object_id": spec.id},
        )
        try:
            adopted = self._read_remote(spec.id, None)
        except RemoteOperationError as e:
            raise AdoptionError("read", self.kind, spec.id, e.__cause__ or e) from e
        if adopted is None:
            raise AdoptionError(
                "read", self.kind, spec.id, ReconcileError("reported as existing but not found")
            )
        return CreateResult(id=spec.id, state=adopted, adopted=True)

    def read(
        self, object_id: str, prior_state: SpecT | Mapping[str, Any] | None = None
    ) -> ReadResult[SpecT] | None:
        """Read remote state. Returns None when the object no longer exists.

        Raises:
            RemoteOperationError: If a Dex call fails.
        """
        prior = self.parse_state(prior_state)
        state = self._read_remote(object_id, prior)
        if state is None:
            logger.info(
                "Object not found on read", extra={"kind": self.kind, "object_id": object_id}
            )
            return None
        inputs = self.SPEC_CLASS.model_validate(
            {name: getattr(state, name) for name in self.SPEC_CLASS.model_fields}
        )
        return ReadResult(id=object_id, inputs=inputs, state=state)  # type: ignore[arg-type]

    def update(
        self,
        declared: SpecT | Mapping[str, Any],
        prior_state: SpecT | Mapping[str, Any],
        simulate_only: bool = False,
    ) -> UpdateResult[SpecT]:
        """Apply declared inputs to an existing object.

        Raises:
            ValidationFailedError: If inputs are invalid or the id changed.
            ReplacementRequiredError: If an immutable property changed.
            RemoteOperationError: If a Dex call fails.
        """
        raw_spec = self.parse(declared)
        spec = validate(raw_spec)
        prior = self.parse_state(prior_state)
        if prior is None:
            raise ReconcileError(f"{self.kind} {spec.id!r}: update requires prior state")
        check_immutable(spec, prior)

        changed = self.diff(spec, prior).changed
        if simulate_only:
            logger.debug(
                "Simulated update",
                extra={"kind": self.kind, "object_id": spec.id, "changed": changed},
            )
            return UpdateResult(state=self._simulated_update_state(raw_spec, prior), changed=changed)

        state = self._update_remote(spec, prior)
        logger.info(
            "Updated object",
            extra={"kind": self.kind, "object_id": spec.id, "changed": changed},
        )
        return UpdateResult(state=state, changed=changed)

    def delete(
        self, object_id: str | None = None, prior_state: SpecT | Mapping[str, Any] | None = None
    ) -> None:
        """Delete the object. An already-absent object counts as deleted.

        Raises:
            ReconcileError: If no id is available.
            RemoteOperationError: If the Dex call fails.
            DeleteVerificationError: If the delete could not be verified.
        """
        if not object_id:
            prior = self.parse_state(prior_state)
            object_id = prior.id if prior is not None else None
        if not object_id:
            raise ReconcileError(f"{self.kind}: cannot delete without an id or prior state")
        self._delete_remote(object_id)

    def diff(
        self,
        declared: SpecT | Mapping[str, Any],
        prior_state: SpecT | Mapping[str, Any],
    ) -> DiffResult:
        """Property-level difference between declared inputs and prior state."""
        spec = apply_defaults(self.parse(declared))
        prior = self.parse_state(prior_state)
        return diff_objects(spec, prior)

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def _simulated_update_state(self, declared: SpecT, prior: SpecT) -> SpecT:
        return self.to_state(declared)

    def _create_remote(self, spec: SpecT) -> tuple[SpecT, bool]:
        """Create remotely. Returns (state, already_exists)."""
        raise NotImplementedError

    def _read_remote(self, object_id: str, prior: SpecT | None) -> SpecT | None:
        raise NotImplementedError

    def _update_remote(self, spec: SpecT, prior: SpecT) -> SpecT:
        raise NotImplementedError

    def _delete_remote(self, object_id: str) -> None:
        raise NotImplementedError

