from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.clock import fixed_clock
from app.main import app
from app.models.commitment import Customer
from app.services.commitment_service import CommitmentService, get_commitment_service
from app.utils.commitment_validation import DuplicateError, NotFoundError

# Fixed "now" for deterministic validity windows
TEST_NOW = datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)


class InMemoryCustomerRepository:
    """Customer repository double keeping deep copies, like a real store."""

    def __init__(self):
        self.customers: Dict[int, Customer] = {}

    async def insert_customer(self, customer: Customer) -> Customer:
        if customer.customer_id in self.customers:
            raise DuplicateError(f"Customer {customer.customer_id} already exists")
        self.customers[customer.customer_id] = customer.model_copy(deep=True)
        return customer

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        customer = self.customers.get(customer_id)
        if customer is None:
            return None
        return customer.model_copy(deep=True)

    async def replace_customer(self, customer: Customer) -> Customer:
        if customer.customer_id not in self.customers:
            raise NotFoundError(f"Customer {customer.customer_id} not found")
        self.customers[customer.customer_id] = customer.model_copy(deep=True)
        return customer

    async def list_customer_ids(self):
        return list(self.customers)

    async def iter_customers(self, customer_ids: Optional[Iterable[int]] = None):
        wanted = None if customer_ids is None else set(customer_ids)
        for customer_id, customer in list(self.customers.items()):
            if wanted is None or customer_id in wanted:
                yield customer.model_copy(deep=True)


@pytest.fixture
def clock():
    return fixed_clock(TEST_NOW)


@pytest.fixture
def repository():
    return InMemoryCustomerRepository()


@pytest.fixture
def service(repository, clock):
    return CommitmentService(repository, clock=clock)


@pytest.fixture
def customer(clock):
    """Customer 42 with a single commitment (target 1000, 3%)."""
    return Customer.create(42, 1000, 3, created_by=7, clock=clock)


@pytest.fixture
def mock_db():
    """Motor database double whose collections are MagicMocks with async methods."""
    db = MagicMock()
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock()
    collection.replace_one = AsyncMock()
    db.__getitem__.return_value = collection
    return db


@pytest.fixture
def test_client(service):
    """FastAPI test client bound to the in-memory service (no MongoDB lifespan)."""
    app.dependency_overrides[get_commitment_service] = lambda: service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
