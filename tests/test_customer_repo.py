"""Tests for the customer repository (motor collection mocked)."""
import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.models.commitment import Customer, PurchaseLedgerEntry, WithdrawnStatus
from app.repositories.customer_repo import CustomerRepository
from app.utils.commitment_validation import DuplicateError, NotFoundError


def async_cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)

    async def mock_async_iter(items):
        for item in items:
            yield item

    cursor.__aiter__ = lambda x: mock_async_iter(docs)
    return cursor


@pytest.mark.asyncio
class TestCustomerRepository:
    """Test CustomerRepository document mapping and error translation."""

    async def test_insert_customer_uses_customer_id_as_key(self, mock_db, customer):
        repo = CustomerRepository(mock_db)

        await repo.insert_customer(customer)

        doc = repo.collection.insert_one.call_args[0][0]
        assert doc["_id"] == 42
        assert "customer_id" not in doc
        assert doc["commitments"][0]["commitment_id"] == customer.commitments[0].commitment_id
        assert doc["commitments"][0]["status"] == {"kind": "valid"}

    async def test_insert_customer_duplicate(self, mock_db, customer):
        repo = CustomerRepository(mock_db)
        repo.collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(DuplicateError):
            await repo.insert_customer(customer)

    async def test_get_customer_round_trip(self, mock_db, customer, clock):
        repo = CustomerRepository(mock_db)
        first = customer.commitments[0]
        customer.add_purchase(
            first.commitment_id, PurchaseLedgerEntry.create(uuid4(), 100, 127, 3, clock), clock
        )
        customer.add_commitment(2000, 1, 7, clock)
        repo.collection.find_one.return_value = CustomerRepository._to_document(customer)

        loaded = await repo.get_customer(42)

        repo.collection.find_one.assert_called_once_with({"_id": 42})
        assert loaded.model_dump() == customer.model_dump()
        assert isinstance(loaded.commitments[0].status, WithdrawnStatus)
        assert loaded.commitments[1].balance == 127

    async def test_get_customer_not_found(self, mock_db):
        repo = CustomerRepository(mock_db)
        repo.collection.find_one.return_value = None

        assert await repo.get_customer(404) is None

    async def test_replace_customer(self, mock_db, customer):
        repo = CustomerRepository(mock_db)
        repo.collection.replace_one.return_value = MagicMock(matched_count=1)

        await repo.replace_customer(customer)

        query, doc = repo.collection.replace_one.call_args[0]
        assert query == {"_id": 42}
        assert doc["_id"] == 42

    async def test_replace_missing_customer(self, mock_db, customer):
        repo = CustomerRepository(mock_db)
        repo.collection.replace_one.return_value = MagicMock(matched_count=0)

        with pytest.raises(NotFoundError):
            await repo.replace_customer(customer)

    async def test_list_customer_ids(self, mock_db):
        repo = CustomerRepository(mock_db)
        repo.collection.find = MagicMock(return_value=async_cursor([{"_id": 3}, {"_id": 1}]))

        assert await repo.list_customer_ids() == [3, 1]
        repo.collection.find.assert_called_once_with({}, {"_id": 1})

    async def test_iter_customers_filters_ids(self, mock_db, customer, clock):
        repo = CustomerRepository(mock_db)
        other = Customer.create(43, 500, 1, 7, clock)
        docs = [CustomerRepository._to_document(c) for c in (customer, other)]
        repo.collection.find = MagicMock(return_value=async_cursor(docs))

        loaded = [c async for c in repo.iter_customers([42, 43])]

        assert [c.customer_id for c in loaded] == [42, 43]
        assert repo.collection.find.call_args[0][0] == {"_id": {"$in": [42, 43]}}

    async def test_default_collection_name(self, mock_db):
        CustomerRepository(mock_db)

        mock_db.__getitem__.assert_called_once_with(settings.CUSTOMERS_COLLECTION)

    async def test_explicit_collection_name(self, mock_db):
        CustomerRepository(mock_db, "customers_archive")

        mock_db.__getitem__.assert_called_once_with("customers_archive")
