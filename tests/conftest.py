import pytest

from order_service.memory_store import InMemoryStore
from order_service.models import Buyer


@pytest.fixture()
def store():
    return InMemoryStore()


@pytest.fixture()
def buyer():
    return Buyer(id="user-001", role="User")
