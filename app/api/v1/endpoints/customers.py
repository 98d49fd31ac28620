from typing import Annotated, List
from uuid import UUID
from fastapi import APIRouter, HTTPException, Depends, Path, status
from fastapi.responses import StreamingResponse

from app.schemas.commitment import (
    ActiveCommitmentResponse,
    AddCommitmentRequest,
    AddPurchaseRequest,
    CommitmentInfo,
    CommitmentResponse,
    CustomerBulkRequest,
    CustomerIdsResponse,
    CustomerResponse,
)
from app.services.commitment_service import CommitmentService, get_commitment_service
from app.utils.commitment_validation import (
    CommitmentError,
    CommitmentValidationError,
    DuplicateError,
    MAX_CUSTOMER_ID,
    NotFoundError,
    StateConflictError,
)

router = APIRouter()

CustomerId = Annotated[int, Path(ge=0, le=MAX_CUSTOMER_ID)]

ERROR_STATUS_CODES = {
    CommitmentValidationError: status.HTTP_400_BAD_REQUEST,
    DuplicateError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StateConflictError: status.HTTP_409_CONFLICT,
    CommitmentError: status.HTTP_400_BAD_REQUEST,
}


def to_http_exception(exc: CommitmentError) -> HTTPException:
    """Translate a commitment error into the matching HTTP error."""
    # subclasses are listed before CommitmentError
    status_code = next(
        code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)
    )
    return HTTPException(status_code=status_code, detail=str(exc))


@router.get("/ids", response_model=CustomerIdsResponse)
async def list_customer_ids(service: CommitmentService = Depends(get_commitment_service)):
    """List all customer ids"""
    return CustomerIdsResponse(customer_ids=await service.get_customer_ids())


@router.post("/active/bulk")
async def has_active_commitment_bulk(
    payload: CustomerBulkRequest,
    service: CommitmentService = Depends(get_commitment_service)
):
    """
    Stream the active commitments of the given customers as NDJSON.

    Duplicate ids are merged; unknown ids and customers without an active
    commitment are skipped.
    """
    active = await service.has_active_commitment_bulk(payload.customer_ids)
    infos: List[CommitmentInfo] = [
        CommitmentInfo.from_customer_commitment(customer_id, commitment)
        for customer_id, commitment in active
    ]

    async def stream():
        for info in infos:
            yield info.model_dump_json() + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: CustomerId,
    service: CommitmentService = Depends(get_commitment_service)
):
    """Get a customer with all of its commitments"""
    try:
        customer = await service.get_customer(customer_id)
    except CommitmentError as exc:
        raise to_http_exception(exc)
    return CustomerResponse.from_customer(customer)


@router.post("/{customer_id}/commitments", response_model=CustomerResponse)
async def add_commitment(
    customer_id: CustomerId,
    payload: AddCommitmentRequest,
    service: CommitmentService = Depends(get_commitment_service)
):
    """Add or renew a commitment (creates the customer if unknown)"""
    try:
        customer = await service.add_commitment(
            customer_id, payload.target, payload.discount_percentage, payload.created_by
        )
    except CommitmentError as exc:
        raise to_http_exception(exc)
    return CustomerResponse.from_customer(customer)


@router.get("/{customer_id}/active", response_model=ActiveCommitmentResponse)
async def has_active_commitment(
    customer_id: CustomerId,
    service: CommitmentService = Depends(get_commitment_service)
):
    """Check whether a customer has an active commitment"""
    try:
        active = await service.has_active_commitment(customer_id)
    except CommitmentError as exc:
        raise to_http_exception(exc)
    return ActiveCommitmentResponse(
        has_active_commitment=active is not None,
        active_commitment=CommitmentResponse.from_commitment(active) if active else None
    )


@router.post(
    "/{customer_id}/commitments/{commitment_id}/purchases",
    response_model=CommitmentResponse
)
async def add_purchase(
    customer_id: CustomerId,
    commitment_id: UUID,
    payload: AddPurchaseRequest,
    service: CommitmentService = Depends(get_commitment_service)
):
    """Post a purchase to the customer's active commitment"""
    try:
        commitment = await service.add_purchase(
            customer_id,
            commitment_id,
            payload.purchase_id,
            payload.total_net,
            payload.total_gross,
            payload.applied_discount
        )
    except CommitmentError as exc:
        raise to_http_exception(exc)
    return CommitmentResponse.from_commitment(commitment)


@router.delete(
    "/{customer_id}/commitments/{commitment_id}/purchases/{purchase_id}",
    response_model=CommitmentResponse
)
async def remove_purchase(
    customer_id: CustomerId,
    commitment_id: UUID,
    purchase_id: UUID,
    service: CommitmentService = Depends(get_commitment_service)
):
    """Remove a purchase from a commitment and its successors"""
    try:
        commitment = await service.remove_purchase(customer_id, commitment_id, purchase_id)
    except CommitmentError as exc:
        raise to_http_exception(exc)
    return CommitmentResponse.from_commitment(commitment)
