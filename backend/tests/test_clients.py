"""Tests for the blob storage and LLM clients."""

import base64
import hashlib
import re
from unittest.mock import MagicMock, patch

import pytest

from importflow.config import Config
from importflow.services.azure_blob import DELETE_FORBIDDEN_MESSAGE, AzureBlobService, get_blob_service
from importflow.services.llm_client import LLMService, get_llm_service

CONNECTION_STRING = 'DefaultEndpointsProtocol=https;AccountName=importdocs;EndpointSuffix=core.windows.net'


@pytest.fixture
def storage(monkeypatch):
    """Blob service wired to a mocked BlobServiceClient."""
    monkeypatch.setattr(Config, 'AZURE_STORAGE_CONNECTION_STRING', CONNECTION_STRING)
    with patch('importflow.services.azure_blob.DefaultAzureCredential'), \
            patch('importflow.services.azure_blob.BlobServiceClient') as client_cls, \
            patch('importflow.services.azure_blob.generate_blob_sas', return_value='sig=abc'):
        client = client_cls.return_value
        blob_client = client.get_blob_client.return_value
        blob_client.url = 'https://importdocs.blob.core.windows.net/import-documents/x.pdf'
        yield AzureBlobService(), client, blob_client


class TestAzureBlobService:
    def test_account_from_connection_string(self, storage) -> None:
        service, _, _ = storage
        assert service.account_name == 'importdocs'

    def test_upload(self, storage) -> None:
        service, _, blob_client = storage
        result = service.upload_file(b'%PDF-1.4', 'Invoice.PDF', 'application/pdf', 'u1')

        assert re.fullmatch(r'u1/\d+-[0-9a-f]{8}\.pdf', result['path'])
        assert result['public_url'].endswith('?sig=abc')
        assert result['file_hash'] == hashlib.sha256(b'%PDF-1.4').hexdigest()
        assert result['size'] == 8
        assert blob_client.upload_blob.call_args.kwargs['overwrite'] is False

    def test_download_and_size(self, storage) -> None:
        service, _, blob_client = storage
        blob_client.download_blob.return_value.readall.return_value = b'data'
        blob_client.get_blob_properties.return_value.size = 4

        assert service.download_file('u1/a.pdf') == b'data'
        assert service.get_file_size('u1/a.pdf') == 4

    def test_delete_is_refused(self, storage) -> None:
        service, _, blob_client = storage
        with pytest.raises(PermissionError, match=DELETE_FORBIDDEN_MESSAGE):
            service.delete_file('u1/a.pdf')
        blob_client.delete_blob.assert_not_called()

    def test_factory_without_configuration(self, monkeypatch) -> None:
        monkeypatch.setattr(Config, 'AZURE_STORAGE_CONNECTION_STRING', None)
        assert get_blob_service() is None


@pytest.fixture
def openai_client(monkeypatch):
    monkeypatch.setattr(Config, 'AZURE_OPENAI_ENDPOINT', 'https://example.openai.azure.com')
    monkeypatch.setattr(Config, 'AZURE_OPENAI_KEY', 'key')
    with patch('importflow.services.llm_client.AzureOpenAI') as client_cls:
        yield client_cls.return_value


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices[0].message.content = content
    response.usage.prompt_tokens = 120
    response.usage.completion_tokens = 30
    return response


class TestLLMService:
    def test_pdf_is_sent_as_file_part(self, openai_client) -> None:
        openai_client.chat.completions.create.return_value = _completion('{"invoice_number": "PI-1"}')

        result = LLMService().extract_from_pdf(b'%PDF', 'Extraia o cabeçalho', 'pi.pdf')

        content = openai_client.chat.completions.create.call_args.kwargs['messages'][0]['content']
        assert content[0]['file']['filename'] == 'pi.pdf'
        assert content[0]['file']['file_data'] == 'data:application/pdf;base64,' + base64.b64encode(b'%PDF').decode()
        assert content[1] == {'type': 'text', 'text': 'Extraia o cabeçalho'}
        assert result['text'] == '{"invoice_number": "PI-1"}'
        assert result['usage'] == {'input_tokens': 120, 'output_tokens': 30}

    def test_complete_json(self, openai_client) -> None:
        openai_client.chat.completions.create.return_value = _completion('{"matches": []}')
        assert LLMService().complete_json('system', 'user') == {'matches': []}
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs['response_format'] == {'type': 'json_object'}

    def test_errors_propagate(self, openai_client) -> None:
        openai_client.chat.completions.create.side_effect = RuntimeError('rate limited')
        with pytest.raises(RuntimeError):
            LLMService().extract_from_pdf(b'%PDF', 'prompt')

    def test_credential_client_uses_refreshing_token_provider(self, monkeypatch) -> None:
        monkeypatch.setattr(Config, 'AZURE_OPENAI_ENDPOINT', 'https://example.openai.azure.com')
        monkeypatch.setattr(Config, 'AZURE_OPENAI_KEY', None)
        with patch('importflow.services.llm_client.DefaultAzureCredential') as credential_cls, \
                patch('importflow.services.llm_client.get_bearer_token_provider') as provider_factory, \
                patch('importflow.services.llm_client.AzureOpenAI') as client_cls:
            LLMService()

        provider_factory.assert_called_once_with(
            credential_cls.return_value, 'https://cognitiveservices.azure.com/.default'
        )
        kwargs = client_cls.call_args.kwargs
        assert kwargs['azure_ad_token_provider'] is provider_factory.return_value
        assert 'api_key' not in kwargs
        credential_cls.return_value.get_token.assert_not_called()

    def test_factory_without_endpoint(self, monkeypatch) -> None:
        monkeypatch.setattr(Config, 'AZURE_OPENAI_ENDPOINT', None)
        assert get_llm_service() is None
