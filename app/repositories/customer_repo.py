"""
CustomerRepository - Persists customers with their embedded commitments.

Storage layout:
- One document per customer, keyed by ``_id = customer_id``
- Commitments and purchase logs are embedded, in list order
- Every write replaces the whole customer document
"""

from typing import AsyncIterator, Iterable, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.models.commitment import Customer
from app.utils.commitment_validation import DuplicateError, NotFoundError


class CustomerRepository:
    """Repository for customers and their commitments."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: Optional[str] = None):
        self.db = db
        self.collection = db[collection_name or settings.CUSTOMERS_COLLECTION]

    async def insert_customer(self, customer: Customer) -> Customer:
        """
        Insert a new customer.

        Raises DuplicateError if a customer with the same id is stored.
        """
        try:
            await self.collection.insert_one(self._to_document(customer))
        except DuplicateKeyError as exc:
            raise DuplicateError(f"Customer {customer.customer_id} already exists") from exc
        return customer

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        """Get customer by id."""
        doc = await self.collection.find_one({"_id": customer_id})
        if doc:
            return self._from_document(doc)
        return None

    async def replace_customer(self, customer: Customer) -> Customer:
        """Persist a mutated customer. Raises NotFoundError if it was never inserted."""
        result = await self.collection.replace_one(
            {"_id": customer.customer_id},
            self._to_document(customer)
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Customer {customer.customer_id} not found")
        return customer

    async def list_customer_ids(self) -> List[int]:
        docs = await self.collection.find({}, {"_id": 1}).sort("created_at", 1).to_list(None)
        return [doc["_id"] for doc in docs]

    async def iter_customers(
        self, customer_ids: Optional[Iterable[int]] = None
    ) -> AsyncIterator[Customer]:
        """Iterate customers in storage order, optionally restricted to ``customer_ids``."""
        query = {}
        if customer_ids is not None:
            query = {"_id": {"$in": list(customer_ids)}}
        async for doc in self.collection.find(query).sort("created_at", 1):
            yield self._from_document(doc)

    # ===== PRIVATE HELPERS =====

    @staticmethod
    def _to_document(customer: Customer) -> dict:
        doc = customer.model_dump()
        doc["_id"] = doc.pop("customer_id")
        return doc

    @staticmethod
    def _from_document(doc: dict) -> Customer:
        doc = dict(doc)
        doc["customer_id"] = doc.pop("_id")
        return Customer(**doc)
