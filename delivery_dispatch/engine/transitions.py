"""Delivery status state machine."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from delivery_dispatch.clients.delivery_api import DeliveryBackend
from delivery_dispatch.engine.status_mapping import effective_delivery_status
from delivery_dispatch.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from delivery_dispatch.models.delivery import Actor, Coordinates, DeliveryStatus
from delivery_dispatch.models.order import OrderStatus
from delivery_dispatch.state.snapshot import SnapshotStore
from delivery_dispatch.utils.logging import DispatchLogger


class DeliveryTransitions:
    """Legal delivery-status transitions for field agents."""

    FIELD_AGENT = {
        DeliveryStatus.ASSIGNED: [DeliveryStatus.PICKED_UP],
        DeliveryStatus.PICKED_UP: [DeliveryStatus.IN_TRANSIT],
        DeliveryStatus.IN_TRANSIT: [DeliveryStatus.DELIVERED],
        DeliveryStatus.DELIVERED: [],
        DeliveryStatus.DELAYED: [],
    }

    @classmethod
    def can_transition(cls, from_state: DeliveryStatus, to_state: DeliveryStatus) -> bool:
        """Check if a field-agent transition is valid."""
        return to_state in cls.FIELD_AGENT.get(from_state, [])

    @classmethod
    def next_status(cls, from_state: DeliveryStatus) -> DeliveryStatus | None:
        """The single next state, or None from a terminal state."""
        targets = cls.FIELD_AGENT.get(from_state, [])
        return targets[0] if targets else None

    @classmethod
    def is_terminal(cls, state: DeliveryStatus) -> bool:
        return not cls.FIELD_AGENT.get(state)


def validate_transition(
    order_id: str,
    current: DeliveryStatus,
    target: DeliveryStatus,
    actor: Actor,
) -> None:
    """Raise TransitionError unless `actor` may move the order to `target`."""
    if actor.is_dispatcher:
        return
    if not DeliveryTransitions.can_transition(current, target):
        raise TransitionError(order_id, current.value, target.value)


class DeliveryProof(BaseModel):
    """Evidence submitted with a delivery."""

    photo_url: str | None = None
    verification_code: str | None = None
    coordinates: Coordinates | None = None


class TransitionState(str, Enum):
    SUBMITTED = "submitted"
    AWAITING_PROOF = "awaiting_proof"


@dataclass
class TransitionOutcome:
    """Result of a transition request."""

    order_id: str
    previous_status: DeliveryStatus
    target_status: DeliveryStatus
    state: TransitionState

    @property
    def submitted(self) -> bool:
        return self.state == TransitionState.SUBMITTED


class StatusTransitionMachine:
    """Validates delivery-status changes and pushes accepted ones to the backend.

    Field agents follow the strict table in `DeliveryTransitions`; a move to
    ``delivered`` is held in `pending_proof` until a photo is attached.
    Dispatchers and administrators bypass the table. Every command is marked
    self-initiated before it goes out, and the marker is withdrawn again when
    the backend rejects it.
    """

    def __init__(
        self,
        backend: DeliveryBackend,
        actor: Actor,
        store: SnapshotStore,
        mark_self_initiated: Callable[[str], None],
        unmark_self_initiated: Callable[[str], None],
    ):
        self.backend = backend
        self.actor = actor
        self.store = store
        self._mark_self_initiated = mark_self_initiated
        self._unmark_self_initiated = unmark_self_initiated
        self.pending_proof: dict[str, DeliveryStatus] = {}
        self.logger = DispatchLogger("transition_machine", actor_id=actor.id)

    def current_status(self, order_id: str) -> DeliveryStatus:
        order = self.store.find(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} is not in the current order list")
        return effective_delivery_status(order, self.store.assignment_for(order_id))

    def _check(self, order_id: str, target: DeliveryStatus) -> DeliveryStatus:
        current = self.current_status(order_id)
        try:
            validate_transition(order_id, current, target, self.actor)
        except TransitionError as e:
            self.logger.log_rejected("update_delivery_status", e.message, order_id=order_id)
            raise
        return current

    async def request(
        self,
        order_id: str,
        target: DeliveryStatus | str,
        proof: DeliveryProof | None = None,
    ) -> TransitionOutcome:
        """Request a delivery-status change for one order."""
        target = DeliveryStatus(target)
        current = self._check(order_id, target)

        needs_proof = (
            target == DeliveryStatus.DELIVERED
            and not self.actor.is_dispatcher
            and not (proof and proof.photo_url)
        )
        if needs_proof:
            self.pending_proof[order_id] = target
            self.logger.logger.info(
                "delivery_awaiting_proof",
                order_id=order_id,
                current_status=current.value,
            )
            return TransitionOutcome(order_id, current, target, TransitionState.AWAITING_PROOF)

        await self._submit(order_id, current, target, proof)
        return TransitionOutcome(order_id, current, target, TransitionState.SUBMITTED)

    async def attach_proof(self, order_id: str, proof: DeliveryProof) -> TransitionOutcome:
        """Submit a transition that was waiting for a delivery photo."""
        target = self.pending_proof.get(order_id)
        if target is None:
            raise ValidationError(f"Order {order_id} has no delivery awaiting proof")
        if not proof.photo_url:
            raise ValidationError("A delivery photo is required to complete the delivery")

        # the order may have moved while the photo was being taken
        current = self._check(order_id, target)
        await self._submit(order_id, current, target, proof)
        return TransitionOutcome(order_id, current, target, TransitionState.SUBMITTED)

    def cancel_pending(self, order_id: str) -> bool:
        return self.pending_proof.pop(order_id, None) is not None

    async def _submit(
        self,
        order_id: str,
        current: DeliveryStatus,
        target: DeliveryStatus,
        proof: DeliveryProof | None,
    ) -> None:
        self._mark_self_initiated(order_id)

        proof = proof or DeliveryProof()
        try:
            await self.backend.update_delivery_status(
                order_id,
                target,
                photo_url=proof.photo_url,
                coordinates=proof.coordinates,
                code=proof.verification_code,
            )
        except Exception as e:
            self._unmark_self_initiated(order_id)
            self.logger.log_command(
                "update_delivery_status", order_id, success=False, error=str(e)
            )
            raise

        self.pending_proof.pop(order_id, None)
        self.store.set_assignment_status(order_id, target)
        self.logger.log_command(
            "update_delivery_status",
            order_id,
            previous_status=current.value,
            status=target.value,
        )

    async def set_order_status(self, order_id: str, status: OrderStatus | str) -> None:
        """Dispatcher override of the backend order status, in any state."""
        status = OrderStatus(status)
        if not self.actor.is_dispatcher:
            self.logger.log_rejected("update_order_status", "role", order_id=order_id)
            raise PermissionDeniedError("Only dispatchers can set the order status directly")

        self._mark_self_initiated(order_id)
        try:
            await self.backend.update_order_status(order_id, status)
        except Exception as e:
            self._unmark_self_initiated(order_id)
            self.logger.log_command(
                "update_order_status", order_id, success=False, error=str(e)
            )
            raise
        self.logger.log_command("update_order_status", order_id, status=status.value)
