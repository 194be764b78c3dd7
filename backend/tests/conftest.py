"""
Pytest fixtures for storefront backend tests.

Store-level tests run against MemoryKeyValueStore with asyncio.run; route
and SQL adapter tests use an in-memory SQLite database.
"""

import asyncio
from datetime import timedelta

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.services.kv_store import MemoryKeyValueStore
from storefront.services.storefront import Storefront
from storefront.time_utils import utcnow


def run(coro):
    """Drive one coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def next_year_expiry() -> str:
    return (utcnow() + timedelta(days=366)).strftime("%m/%y")


VALID_VISA = "4111111111111111"


@pytest.fixture(scope='function')
def kv():
    return MemoryKeyValueStore()


@pytest.fixture(scope='function')
def shop(kv):
    """A fully wired data layer over the in-memory medium."""
    return Storefront(kv)


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOREFRONT_STORAGE': 'sql',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()
