from typing import Annotated, List, Optional
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict

from app.models.commitment import Commitment, Customer
from app.utils.commitment_validation import MAX_CUSTOMER_ID

CustomerId = Annotated[int, Field(ge=0, le=MAX_CUSTOMER_ID)]


class AddCommitmentRequest(BaseModel):
    """Request body to add or renew a customer's commitment."""
    target: int = Field(..., ge=0)
    discount_percentage: int
    created_by: int = Field(..., ge=0, le=MAX_CUSTOMER_ID)


class AddPurchaseRequest(BaseModel):
    """Request body to post a purchase against a commitment."""
    purchase_id: UUID
    total_net: int = Field(..., ge=0)
    total_gross: int = Field(..., ge=0)
    applied_discount: int = Field(..., ge=0)


class CustomerBulkRequest(BaseModel):
    customer_ids: List[CustomerId]


class CustomerIdsResponse(BaseModel):
    customer_ids: List[int]


class PurchaseResponse(BaseModel):
    purchase_id: UUID
    total_net: int
    total_gross: int
    applied_discount: int
    removed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommitmentResponse(BaseModel):
    """Commitment with its status flattened to ``status`` + ``successor``."""
    commitment_id: UUID
    target: int
    discount_percentage: int
    valid_till: datetime
    balance: int
    purchase_log: List[PurchaseResponse]
    status: str  # valid | withdrawn
    successor: Optional[UUID] = None
    created_at: datetime
    created_by: int

    @classmethod
    def from_commitment(cls, commitment: Commitment) -> "CommitmentResponse":
        return cls(
            commitment_id=commitment.commitment_id,
            target=commitment.target,
            discount_percentage=commitment.discount_percentage,
            valid_till=commitment.valid_till,
            balance=commitment.balance,
            purchase_log=[PurchaseResponse.model_validate(p) for p in commitment.purchase_log],
            status=commitment.status.kind,
            successor=commitment.successor,
            created_at=commitment.created_at,
            created_by=commitment.created_by
        )


class CommitmentInfo(CommitmentResponse):
    """Commitment tagged with its owning customer (bulk queries)."""
    customer_id: int

    @classmethod
    def from_customer_commitment(cls, customer_id: int, commitment: Commitment) -> "CommitmentInfo":
        return cls(
            customer_id=customer_id,
            **CommitmentResponse.from_commitment(commitment).model_dump()
        )


class ActiveCommitmentResponse(BaseModel):
    has_active_commitment: bool
    active_commitment: Optional[CommitmentResponse] = None


class CustomerResponse(BaseModel):
    customer_id: int
    commitments: List[CommitmentResponse]
    created_at: datetime
    created_by: int

    @classmethod
    def from_customer(cls, customer: Customer) -> "CustomerResponse":
        return cls(
            customer_id=customer.customer_id,
            commitments=[CommitmentResponse.from_commitment(c) for c in customer.commitments],
            created_at=customer.created_at,
            created_by=customer.created_by
        )
