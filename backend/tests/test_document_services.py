"""Tests for document caching, saving and process linking."""

import json
from unittest.mock import MagicMock

import pytest

from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.document_cache import DocumentCacheService
from importflow.services.document_save import DocumentSaveService
from importflow.services.nocodb import NocoDBError
from importflow.services.process_documents import ProcessDocumentService, parse_pipeline

from conftest import rows

FILE_HASH = 'a' * 64
UPLOADS = NOCODB_TABLES['DOCUMENT_UPLOADS']
PROFORMA_HEADERS = NOCODB_TABLES['PROFORMA_INVOICE']['HEADERS']
PROFORMA_ITEMS = NOCODB_TABLES['PROFORMA_INVOICE']['ITEMS']
SAVES = NOCODB_TABLES['AUDIT']['DOCUMENT_SAVES']


def _tables(mapping: dict):
    """find() side effect returning rows per table id."""
    def find(table_id, **kwargs):
        return rows(*mapping.get(table_id, []))
    return find


class TestDocumentCacheService:
    def test_reconstructs_proforma(self, nocodb: MagicMock) -> None:
        nocodb.find.side_effect = _tables({
            PROFORMA_HEADERS: [{'Id': 1, 'invoiceNumber': 'PI-1', 'preco_total': '100', 'hash_arquivo_origem': FILE_HASH}],
            PROFORMA_ITEMS: [{'Id': 5, 'numero_item': 1, 'quantidade': 10}],
        })
        structured = DocumentCacheService(nocodb).reconstruct_structured_result(
            {'hashArquivo': FILE_HASH}, 'proforma_invoice'
        )

        assert structured['header'] == {
            'data': {'invoice_number': 'PI-1', 'total_price': '100'},
            'source': 'cache',
            'metadata': {'fromCache': True},
        }
        assert structured['items']['data'] == [{'item_number': 1, 'quantity': 10}]

    def test_no_header_means_no_cache(self, nocodb: MagicMock) -> None:
        cache = DocumentCacheService(nocodb)
        assert cache.reconstruct_structured_result({'hashArquivo': FILE_HASH}, 'bl') is None
        assert cache.reconstruct_structured_result({'hashArquivo': FILE_HASH}, 'unknown') is None
        assert cache.reconstruct_structured_result({}, 'bl') is None

    def test_numerario_gets_di_info(self, nocodb: MagicMock) -> None:
        nocodb.find.return_value = rows({'invoiceNumber': 'INV-1', 'numero_di': '24/000001-0', 'valor_reais': 10})
        structured = DocumentCacheService(nocodb).reconstruct_structured_result(
            {'hashArquivo': FILE_HASH}, 'numerario'
        )
        assert structured['diInfo']['data'] == {
            'di_number': '24/000001-0', 'invoice_number': 'INV-1', 'referencia_pedido': None
        }

    def test_swift_is_nested_again(self, nocodb: MagicMock) -> None:
        nocodb.find.return_value = rows({'tipo_mensagem': 'MT103', 'beneficiario_nome': 'ACME'})
        header = DocumentCacheService(nocodb).reconstruct_structured_result(
            {'hashArquivo': FILE_HASH}, 'swift'
        )['header']['data']
        assert header['message_type'] == 'MT103'
        assert header['beneficiary']['name'] == 'ACME'

    def test_document_data_for_pending_upload(self, nocodb: MagicMock) -> None:
        nocodb.find_by_field.return_value = {'Id': 3, 'statusProcessamento': 'pendente', 'tipoDocumento': 'di'}
        data = DocumentCacheService(nocodb).get_document_data(FILE_HASH)
        assert data['isComplete'] is False
        assert data['structuredResult'] is None
        assert data['documentType'] == 'di'

    def test_document_data_for_unknown_hash(self, nocodb: MagicMock) -> None:
        assert DocumentCacheService(nocodb).get_document_data(FILE_HASH) is None

    def test_find_by_original_name_requires_complete(self, nocodb: MagicMock) -> None:
        cache = DocumentCacheService(nocodb)
        nocodb.find.return_value = rows({'Id': 1, 'statusProcessamento': 'pendente'})
        assert cache.find_by_original_name('pi.pdf') is None

        nocodb.find.return_value = rows({'Id': 2, 'statusProcessamento': 'completo'})
        assert cache.find_by_original_name('pi.pdf')['Id'] == 2
        assert nocodb.find.call_args.kwargs['sort'] == '-dataUpload'

    def test_find_by_original_name_quotes_parentheses(self, nocodb: MagicMock) -> None:
        DocumentCacheService(nocodb).find_by_original_name('Invoice (1).pdf')
        assert nocodb.find.call_args.kwargs['where'] == '(nomeOriginal,eq,"Invoice (1).pdf")'

    def test_is_document_saved(self, nocodb: MagicMock) -> None:
        cache = DocumentCacheService(nocodb)
        nocodb.count.return_value = 1
        assert cache.is_document_saved(FILE_HASH, 'di')
        assert nocodb.count.call_args.kwargs['where'] == f'(hash_arquivo_origem,eq,{FILE_HASH})'
        assert not cache.is_document_saved(FILE_HASH, 'unknown')

    def test_status_updates(self, nocodb: MagicMock) -> None:
        cache = DocumentCacheService(nocodb)
        cache.update_upload_status(3, 'PI-1')
        table, record_id, data = nocodb.update.call_args.args
        assert (table, record_id) == (UPLOADS, 3)
        assert data['statusProcessamento'] == 'completo'
        assert data['idDocumento'] == 'PI-1'

        cache.mark_upload_error(3, 'boom')
        assert nocodb.update.call_args.args[2]['statusProcessamento'] == 'erro'


class TestDocumentSaveService:
    def test_saves_header_and_items(self, nocodb: MagicMock) -> None:
        nocodb.create.return_value = {'Id': 11}
        nocodb.find_by_field.return_value = {'Id': 3, 'hashArquivo': FILE_HASH}
        data = {
            'header': {'data': {'invoice_number': 'PI-1', 'total_price': '100'}, 'source': 'step_1'},
            'items': {'data': json.dumps([{'item_number': 1}, {'item_number': 2}])},
        }

        result = DocumentSaveService(nocodb).save_document('proforma_invoice', data, FILE_HASH, 'u1')

        assert result == {
            'success': True,
            'documentId': 'PI-1',
            'details': {'headerId': 11, 'itemsCreated': 2, 'containersCreated': 0, 'taxInfoCreated': 0},
        }
        header_call = nocodb.create.call_args_list[0]
        assert header_call.args == (PROFORMA_HEADERS, {
            'invoiceNumber': 'PI-1', 'preco_total': '100', 'hash_arquivo_origem': FILE_HASH
        })
        table, items = nocodb.bulk_create.call_args.args
        assert table == PROFORMA_ITEMS
        assert items[0] == {'numero_item': 1, 'hash_arquivo_origem': FILE_HASH}

        assert nocodb.update.call_args.args[2]['idDocumento'] == 'PI-1'
        assert nocodb.create.call_args_list[-1].args[0] == SAVES

    def test_links_process_when_given(self, nocodb: MagicMock) -> None:
        DocumentSaveService(nocodb).save_document(
            'contrato_cambio', {'header': {'contrato': '123'}}, FILE_HASH, process_id=7
        )
        relation_calls = [c for c in nocodb.create.call_args_list
                          if c.args[0] == NOCODB_TABLES['PROCESSO_DOCUMENTO_REL']]
        assert relation_calls[0].args[1] == {'processo_importacao': '7', 'hash_arquivo_upload': FILE_HASH}

    def test_numerario_merges_di_info(self, nocodb: MagicMock) -> None:
        data = {'diInfo': {'data': {'di_number': '24/1', 'invoice_number': 'INV-1'}},
                'header': {'data': {'valor_reais': 10}}}
        result = DocumentSaveService(nocodb).save_document('numerario', data, FILE_HASH)

        row = nocodb.create.call_args_list[0].args[1]
        assert row['numero_di'] == '24/1'
        assert row['invoiceNumber'] == 'INV-1'
        assert result['documentId'] == 'INV-1'

    def test_swift_message_is_flattened(self, nocodb: MagicMock) -> None:
        data = {'message_type': 'MT103', 'senders_reference': 'REF1', 'beneficiary': {'name': 'ACME'}}
        result = DocumentSaveService(nocodb).save_document('swift', data, FILE_HASH)

        row = nocodb.create.call_args_list[0].args[1]
        assert row['beneficiario_nome'] == 'ACME'
        assert result['documentId'] == 'REF1'

    def test_header_is_required(self, nocodb: MagicMock) -> None:
        with pytest.raises(ValueError):
            DocumentSaveService(nocodb).save_document('bl', {'containers': []}, FILE_HASH)
        nocodb.create.assert_not_called()

    def test_failed_write_marks_upload_error(self, nocodb: MagicMock) -> None:
        nocodb.find_by_field.return_value = {'Id': 3}
        nocodb.create.side_effect = NocoDBError('Invalid column', 400)
        with pytest.raises(NocoDBError):
            DocumentSaveService(nocodb).save_document('bl', {'header': {'bl_number': 'B1'}}, FILE_HASH)
        assert nocodb.update.call_args.args[2]['statusProcessamento'] == 'erro'

    def test_save_log_failure_does_not_fail_save(self, nocodb: MagicMock) -> None:
        def create(table_id, data):
            if table_id == SAVES:
                raise NocoDBError('Table not found', 404)
            return {'Id': 1}
        nocodb.create.side_effect = create

        result = DocumentSaveService(nocodb).save_document('bl', {'header': {'bl_number': 'B1'}}, FILE_HASH)
        assert result['success'] is True

    def test_update_resets_then_saves(self, nocodb: MagicMock) -> None:
        nocodb.find.side_effect = _tables({NOCODB_TABLES['BL']['HEADERS']: [{'Id': 4}]})
        nocodb.find_by_field.return_value = {'Id': 3}

        DocumentSaveService(nocodb).update_document('bl', {'header': {'bl_number': 'B2'}}, FILE_HASH)

        nocodb.bulk_delete.assert_called_once_with(NOCODB_TABLES['BL']['HEADERS'], [4])
        statuses = [c.args[2].get('statusProcessamento') for c in nocodb.update.call_args_list]
        assert statuses == ['pendente', 'completo']
        assert json.loads(nocodb.create.call_args_list[-1].args[1]['details'])['fileHash'] == FILE_HASH
        assert nocodb.create.call_args_list[-1].args[1]['operation'] == 'update'


class TestProcessDocumentService:
    def test_link_is_idempotent(self, nocodb: MagicMock) -> None:
        service = ProcessDocumentService(nocodb)
        nocodb.find.return_value = rows({'Id': 9, 'processo_importacao': '1'})
        assert service.link_document_to_process(1, FILE_HASH)['Id'] == 9
        nocodb.create.assert_not_called()

    def test_link_with_metadata_upserts_pipeline(self, nocodb: MagicMock) -> None:
        pipeline = [{'documentType': 'proforma_invoice', 'fileHash': 'old', 'status': 'pending'}]
        nocodb.find_by_field.return_value = {'Id': 1, 'documentsPipeline': json.dumps(pipeline)}

        result = ProcessDocumentService(nocodb).link_document_with_metadata(
            'IMP-1', FILE_HASH, {'documentType': 'proforma_invoice', 'documentId': 'PI-1'}
        )

        update = nocodb.update.call_args.args[2]
        stored = json.loads(update['documentsPipeline'])
        assert len(stored) == 1
        assert stored[0]['fileHash'] == FILE_HASH
        assert stored[0]['status'] == 'completed'
        assert update['proforma_invoice_doc_id'] == 'PI-1'
        assert result['processId'] == 1

    def test_link_with_metadata_unknown_process(self, nocodb: MagicMock) -> None:
        with pytest.raises(LookupError):
            ProcessDocumentService(nocodb).link_document_with_metadata('IMP-X', FILE_HASH, {})

    def test_completion_status(self, nocodb: MagicMock) -> None:
        nocodb.find.return_value = rows({'hash_arquivo_upload': 'h1'}, {'hash_arquivo_upload': 'h2'})
        nocodb.find_by_field.side_effect = [
            {'tipoDocumento': 'packing_list'},
            {'tipoDocumento': 'commercial_invoice'},
        ]
        status = ProcessDocumentService(nocodb).get_process_completion_status(1)

        assert status['completed'] == ['commercial_invoice', 'packing_list']
        assert status['percentage'] == 29
        assert status['canProcessPhysicalReceipt'] is True
        assert status['canProcessFiscal'] is False

    def test_unlink(self, nocodb: MagicMock) -> None:
        service = ProcessDocumentService(nocodb)
        assert service.unlink_document_from_process(1, FILE_HASH) is False

        nocodb.find.return_value = rows({'Id': 9})
        assert service.unlink_document_from_process(1, FILE_HASH) is True
        nocodb.delete.assert_called_once_with(NOCODB_TABLES['PROCESSO_DOCUMENTO_REL'], 9)

    def test_remove_from_pipeline(self, nocodb: MagicMock) -> None:
        process = {'Id': 1, 'documentsPipeline': json.dumps([{'fileHash': FILE_HASH}, {'fileHash': 'b'}])}
        remaining = ProcessDocumentService(nocodb).remove_from_pipeline(process, FILE_HASH)
        assert remaining == [{'fileHash': 'b'}]
        nocodb.update.assert_called_once()

    @pytest.mark.parametrize('value, expected', [
        (None, []),
        ('not json', []),
        ('{"a": 1}', []),
        ([{'a': 1}], [{'a': 1}]),
        ('[{"a": 1}]', [{'a': 1}]),
    ])
    def test_parse_pipeline(self, value, expected) -> None:
        assert parse_pipeline(value) == expected
