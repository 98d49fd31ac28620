"""
Commitment model - Customer discount pledges and their purchase ledger.

Design principles:
- A customer owns an append-only, chronological list of commitments
- Only the last commitment of a customer can be active
- Changing the discount tier withdraws the active commitment and links it
  to a successor that carries the balance and purchase log forward
- Ledger entries are never deleted, only flagged as removed
- balance == sum of total_gross over entries that are not removed,
  maintained incrementally by every ledger mutation
"""

from typing import List, Literal, Optional, Union
from datetime import datetime, timezone
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from app.core.clock import Clock, utcnow
from app.utils.commitment_validation import (
    DuplicateError,
    MAX_CUSTOMER_ID,
    NotFoundError,
    StateConflictError,
    validate_discount_percentage,
)


def valid_till_for(created_at: datetime) -> datetime:
    """Start of the calendar year following ``created_at`` (00:00:00 UTC, Jan 1)."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    year = created_at.astimezone(timezone.utc).year
    return datetime(year + 1, 1, 1, tzinfo=timezone.utc)


class PurchaseLedgerEntry(BaseModel):
    """One purchase applied against a commitment balance."""
    purchase_id: UUID
    total_net: int
    total_gross: int
    applied_discount: int
    removed: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        purchase_id: UUID,
        total_net: int,
        total_gross: int,
        applied_discount: int,
        clock: Clock = utcnow,
    ) -> "PurchaseLedgerEntry":
        return cls(
            purchase_id=purchase_id,
            total_net=total_net,
            total_gross=total_gross,
            applied_discount=applied_discount,
            created_at=clock(),
        )

    def mark_removed(self) -> "PurchaseLedgerEntry":
        # No guard against a second call; Commitment owns the balance adjustment.
        self.removed = True
        return self


class ValidStatus(BaseModel):
    kind: Literal["valid"] = "valid"


class WithdrawnStatus(BaseModel):
    kind: Literal["withdrawn"] = "withdrawn"
    successor: UUID


CommitmentStatus = Union[ValidStatus, WithdrawnStatus]


class Commitment(BaseModel):
    """
    Discount pledge: reach ``target`` before ``valid_till`` for
    ``discount_percentage``.

    Invariants:
    - 0 <= discount_percentage <= 6
    - valid_till is fixed at creation and never recomputed
    - status only moves Valid -> Withdrawn(successor)
    """
    commitment_id: UUID = Field(default_factory=uuid4)
    target: int
    discount_percentage: int
    valid_till: datetime
    balance: int = 0
    purchase_log: List[PurchaseLedgerEntry] = []
    status: CommitmentStatus = Field(default_factory=ValidStatus, discriminator="kind")
    created_at: datetime = Field(default_factory=utcnow)
    created_by: int

    @classmethod
    def create(
        cls,
        target: int,
        discount_percentage: int,
        created_by: int,
        clock: Clock = utcnow,
    ) -> "Commitment":
        """
        Create a fresh commitment.

        Raises CommitmentValidationError if the discount is out of range.
        """
        validate_discount_percentage(discount_percentage)
        now = clock()
        return cls(
            target=target,
            discount_percentage=discount_percentage,
            valid_till=valid_till_for(now),
            created_at=now,
            created_by=created_by,
        )

    @property
    def successor(self) -> Optional[UUID]:
        if isinstance(self.status, WithdrawnStatus):
            return self.status.successor
        return None

    def is_active(self, clock: Clock = utcnow) -> bool:
        """True if the commitment is not withdrawn and still within its window."""
        status = self.status
        if isinstance(status, ValidStatus):
            return clock() <= self.valid_till
        if isinstance(status, WithdrawnStatus):
            return False
        raise TypeError(f"Unknown commitment status: {status!r}")

    def withdraw(
        self,
        new_target: int,
        new_discount_percentage: int,
        created_by: int,
        clock: Clock = utcnow,
    ) -> "Commitment":
        """
        Replace this commitment with a successor on a new discount tier.

        The successor gets a fresh id and validity window but inherits the
        balance and the whole purchase log, removed entries included.
        This commitment is left untouched if the new tier is invalid.

        The caller must append the returned commitment to the customer.
        """
        successor = Commitment.create(new_target, new_discount_percentage, created_by, clock)
        successor.balance = self.balance
        successor.purchase_log = [entry.model_copy() for entry in self.purchase_log]
        successor.created_at = clock()
        successor.created_by = created_by
        self.status = WithdrawnStatus(successor=successor.commitment_id)
        return successor

    def find_purchase(self, purchase_id: UUID) -> Optional[PurchaseLedgerEntry]:
        for entry in self.purchase_log:
            if entry.purchase_id == purchase_id:
                return entry
        return None

    def add_purchase(self, entry: PurchaseLedgerEntry) -> "Commitment":
        """Append a purchase and raise the balance by its gross total."""
        if self.find_purchase(entry.purchase_id) is not None:
            raise DuplicateError(
                f"Purchase {entry.purchase_id} is already in the purchase log"
            )
        self.purchase_log.append(entry)
        self.balance += entry.total_gross
        return self

    def remove_purchase(self, purchase_id: UUID) -> "Commitment":
        """
        Flag a purchase as removed and lower the balance by its gross total.

        Only presence in the log is checked, so removing the same id twice
        subtracts its gross total twice.
        """
        entry = self.find_purchase(purchase_id)
        if entry is None:
            raise NotFoundError(f"Purchase {purchase_id} is not in commitment {self.commitment_id}")
        entry.mark_removed()
        self.balance -= entry.total_gross
        return self


class Customer(BaseModel):
    """
    Customer aggregate: the only entry point for commitment mutations.

    Invariants:
    - commitments are in insertion order and never removed
    - only the last commitment can be active
    - every Withdrawn(successor) points to a later commitment of this customer
    """
    customer_id: int = Field(ge=0, le=MAX_CUSTOMER_ID)
    commitments: List[Commitment] = []
    created_at: datetime = Field(default_factory=utcnow)
    created_by: int

    @classmethod
    def create(
        cls,
        customer_id: int,
        target: int,
        discount_percentage: int,
        created_by: int,
        clock: Clock = utcnow,
    ) -> "Customer":
        return cls(
            customer_id=customer_id,
            commitments=[Commitment.create(target, discount_percentage, created_by, clock)],
            created_at=clock(),
            created_by=created_by,
        )

    def get_active_commitment(self, clock: Clock = utcnow) -> Optional[Commitment]:
        if not self.commitments:
            return None
        last = self.commitments[-1]
        if last.is_active(clock):
            return last
        return None

    def has_active_commitment(self, clock: Clock = utcnow) -> bool:
        return self.get_active_commitment(clock) is not None

    def has_commitment(self, commitment_id: UUID) -> bool:
        return any(c.commitment_id == commitment_id for c in self.commitments)

    def get_commitment(self, commitment_id: UUID) -> Commitment:
        for commitment in self.commitments:
            if commitment.commitment_id == commitment_id:
                return commitment
        raise NotFoundError(
            f"Commitment {commitment_id} not found for customer {self.customer_id}"
        )

    def add_commitment(
        self,
        new_target: int,
        new_discount_percentage: int,
        created_by: int,
        clock: Clock = utcnow,
    ) -> "Customer":
        """Withdraw the active commitment in favour of a new one, or start a fresh one."""
        active = self.get_active_commitment(clock)
        if active is not None:
            successor = active.withdraw(new_target, new_discount_percentage, created_by, clock)
            self.commitments.append(successor)
        else:
            self.commitments.append(
                Commitment.create(new_target, new_discount_percentage, created_by, clock)
            )
        return self

    def add_purchase(
        self,
        commitment_id: UUID,
        entry: PurchaseLedgerEntry,
        clock: Clock = utcnow,
    ) -> "Customer":
        """Post a purchase; only the active (last) commitment accepts purchases."""
        if not self.has_commitment(commitment_id):
            raise NotFoundError(
                f"Commitment {commitment_id} not found for customer {self.customer_id}"
            )
        active = self.get_active_commitment(clock)
        if active is None:
            raise StateConflictError(
                f"Customer {self.customer_id} has no active commitment"
            )
        if active.commitment_id != commitment_id:
            raise StateConflictError(
                f"Commitment {commitment_id} has been superseded by {active.commitment_id}"
            )
        active.add_purchase(entry)
        return self

    def remove_purchase(self, commitment_id: UUID, purchase_id: UUID) -> "Customer":
        """
        Remove a purchase from a commitment and every successor it was copied into.

        Walks the withdrawal chain starting at ``commitment_id``. A miss on a
        withdrawn link is ignored; a miss on the terminal (valid) link raises
        NotFoundError.
        """
        commitment = self.get_commitment(commitment_id)
        # A well-formed chain visits each commitment at most once.
        for _ in range(len(self.commitments)):
            status = commitment.status
            if isinstance(status, ValidStatus):
                commitment.remove_purchase(purchase_id)
                return self
            if isinstance(status, WithdrawnStatus):
                try:
                    commitment.remove_purchase(purchase_id)
                except NotFoundError:
                    # purchase was posted after this link was withdrawn
                    pass
                commitment = self.get_commitment(status.successor)
                continue
            raise TypeError(f"Unknown commitment status: {status!r}")
        raise StateConflictError(
            f"Withdrawal chain from commitment {commitment_id} does not terminate"
        )
