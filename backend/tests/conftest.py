"""Shared fixtures for the import operations API test suite."""

from unittest.mock import MagicMock

import pytest

from importflow import create_app
from importflow.services import nocodb as nocodb_module
from importflow.services import ocr_extraction


@pytest.fixture
def nocodb(monkeypatch) -> MagicMock:
    """A NocoDB client double installed as the shared instance."""
    mock = MagicMock(spec=nocodb_module.NocoDBService)
    mock.find.return_value = {'list': [], 'pageInfo': {}}
    mock.find_one.return_value = None
    mock.find_by_field.return_value = None
    mock.count.return_value = 0
    mock.create.return_value = {'Id': 1}
    mock.bulk_create.return_value = []
    mock.bulk_delete.return_value = []
    monkeypatch.setattr(nocodb_module, '_instance', mock)
    return mock


@pytest.fixture
def llm() -> MagicMock:
    """An LLM client double; tests set its return values."""
    mock = MagicMock()
    mock.model = 'gpt-4o'
    return mock


@pytest.fixture
def app(nocodb):
    app = create_app()
    app.config['TESTING'] = True
    yield app
    ocr_extraction.reset_ocr_extraction_service()


@pytest.fixture
def client(app):
    return app.test_client()


def rows(*records) -> dict:
    """NocoDB list response."""
    return {'list': list(records), 'pageInfo': {}}
