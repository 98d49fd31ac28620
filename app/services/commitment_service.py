import asyncio
import logging
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from app.core.clock import Clock, utcnow
from app.db.mongo import get_db
from app.models.commitment import Commitment, Customer, PurchaseLedgerEntry
from app.repositories.customer_repo import CustomerRepository
from app.utils.commitment_validation import CommitmentError, NotFoundError

logger = logging.getLogger(__name__)


class CommitmentService:
    """
    Service contract over the customer collection.

    Every operation holds one lock for the whole collection, loads the
    customer, applies the state transition and persists it before
    releasing. Rejected operations are never written back.
    """

    def __init__(self, repository: CustomerRepository, clock: Clock = utcnow):
        self.repository = repository
        self.clock = clock
        self._lock = asyncio.Lock()

    async def get_customer_ids(self) -> List[int]:
        async with self._lock:
            return await self.repository.list_customer_ids()

    async def get_customer(self, customer_id: int) -> Customer:
        async with self._lock:
            return await self._require_customer(customer_id)

    async def add_commitment(
        self,
        customer_id: int,
        target: int,
        discount_percentage: int,
        created_by: int
    ) -> Customer:
        """Renew the customer's commitment, creating the customer if unknown."""
        async with self._lock:
            try:
                customer = await self.repository.get_customer(customer_id)
                if customer is not None:
                    customer.add_commitment(target, discount_percentage, created_by, self.clock)
                    await self.repository.replace_customer(customer)
                    logger.info(
                        "Customer %s renewed commitment: %s",
                        customer_id, customer.commitments[-1].commitment_id
                    )
                    return customer

                customer = Customer.create(
                    customer_id, target, discount_percentage, created_by, self.clock
                )
                await self.repository.insert_customer(customer)
                logger.info(
                    "Customer %s created with commitment %s",
                    customer_id, customer.commitments[0].commitment_id
                )
                return await self._require_customer(customer_id)
            except CommitmentError as exc:
                logger.warning("add_commitment rejected for customer %s: %s", customer_id, exc)
                raise

    async def has_active_commitment(self, customer_id: int) -> Optional[Commitment]:
        """Return the customer's active commitment, or None."""
        async with self._lock:
            customer = await self._require_customer(customer_id)
            return customer.get_active_commitment(self.clock)

    async def has_active_commitment_bulk(
        self, customer_ids: Iterable[int]
    ) -> List[Tuple[int, Commitment]]:
        """Active commitments of the given customers; unknown ids and inactive customers are skipped."""
        result = []
        async with self._lock:
            async for customer in self.repository.iter_customers(set(customer_ids)):
                active = customer.get_active_commitment(self.clock)
                if active is not None:
                    result.append((customer.customer_id, active))
        return result

    async def add_purchase(
        self,
        customer_id: int,
        commitment_id: UUID,
        purchase_id: UUID,
        total_net: int,
        total_gross: int,
        applied_discount: int
    ) -> Commitment:
        """Post a purchase to the customer's active commitment and return it."""
        async with self._lock:
            try:
                customer = await self._require_customer(customer_id)
                entry = PurchaseLedgerEntry.create(
                    purchase_id, total_net, total_gross, applied_discount, self.clock
                )
                customer.add_purchase(commitment_id, entry, self.clock)
                await self.repository.replace_customer(customer)
            except CommitmentError as exc:
                logger.warning(
                    "add_purchase rejected for customer %s, commitment %s: %s",
                    customer_id, commitment_id, exc
                )
                raise
            logger.info(
                "Purchase %s added to commitment %s of customer %s",
                purchase_id, commitment_id, customer_id
            )
            return customer.get_commitment(commitment_id)

    async def remove_purchase(
        self,
        customer_id: int,
        commitment_id: UUID,
        purchase_id: UUID
    ) -> Commitment:
        """Remove a purchase along the withdrawal chain and return the named commitment."""
        async with self._lock:
            try:
                customer = await self._require_customer(customer_id)
                customer.remove_purchase(commitment_id, purchase_id)
                await self.repository.replace_customer(customer)
            except CommitmentError as exc:
                logger.warning(
                    "remove_purchase rejected for customer %s, commitment %s: %s",
                    customer_id, commitment_id, exc
                )
                raise
            logger.info(
                "Purchase %s removed from commitment %s of customer %s",
                purchase_id, commitment_id, customer_id
            )
            return customer.get_commitment(commitment_id)

    async def _require_customer(self, customer_id: int) -> Customer:
        customer = await self.repository.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer


_service: Optional[CommitmentService] = None


def get_commitment_service() -> CommitmentService:
    """Process-wide service instance; shares one collection lock across requests."""
    global _service
    if _service is None:
        _service = CommitmentService(CustomerRepository(get_db()))
    return _service


def reset_commitment_service() -> None:
    global _service
    _service = None
