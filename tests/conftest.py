"""
Pytest configuration and shared fixtures for broker tests.
"""
import pytest
from loguru import logger

from cloud_broker.core.ledger import CapacityLedger
from test_utils import RecordingKernel, create_test_hosts


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during the test."""
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def uniform_hosts():
    """Four hosts with 4 PEs each."""
    return create_test_hosts(4, num_pes=4)


@pytest.fixture
def ledger(uniform_hosts):
    """Ledger with the uniform hosts registered."""
    return CapacityLedger(uniform_hosts)


@pytest.fixture
def single_provider_kernel():
    """Recording kernel with one provider (#0)."""
    return RecordingKernel(providers=[0])


@pytest.fixture
def two_provider_kernel():
    """Recording kernel with two providers (#0 and #1)."""
    return RecordingKernel(providers=[0, 1])
