"""Tests for the HTTP API blueprints."""

import hashlib
import io
from unittest.mock import MagicMock, patch

import pytest

from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.comparison import ComparisonService
from importflow.services.nocodb import NocoDBError

from conftest import rows

PDF = b'%PDF-1.4 fake document'
PDF_HASH = hashlib.sha256(PDF).hexdigest()
USER_HEADERS = {'X-User-Id': 'u1', 'X-User-Email': 'ana@example.com'}


@pytest.fixture
def blob() -> MagicMock:
    mock = MagicMock()
    mock.upload_file.return_value = {
        'path': 'u1/1700000000000-abc123.pdf',
        'public_url': 'https://storage.example/documents/u1/1700000000000-abc123.pdf',
    }
    return mock


def _pdf_form(**fields) -> dict:
    return {'file': (io.BytesIO(PDF), 'invoice.pdf', 'application/pdf'), **fields}


class TestApp:
    def test_health(self, client) -> None:
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['service'] == 'Import Operations API'

    def test_status(self, client) -> None:
        body = client.get('/api/status').get_json()
        assert set(body['nocodb']) == {'configured', 'hasUrl', 'hasToken'}
        assert set(body['services']) == {'nocodb', 'storage', 'openai'}

    def test_unknown_route(self, client) -> None:
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'Not found'}


class TestOCRRoutes:
    def test_upload_requires_file(self, client) -> None:
        response = client.post('/api/ocr/upload', data={'documentType': 'bl'}, content_type='multipart/form-data')
        assert response.status_code == 400

    def test_upload_requires_document_type(self, client) -> None:
        response = client.post('/api/ocr/upload', data=_pdf_form(), content_type='multipart/form-data')
        assert response.status_code == 400
        assert response.get_json()['error'] == 'documentType required'

    def test_upload(self, client, nocodb, blob) -> None:
        nocodb.create.return_value = {'Id': 9}
        with patch('importflow.routes.ocr.get_blob_service', return_value=blob):
            response = client.post('/api/ocr/upload', data=_pdf_form(documentType='proforma_invoice'),
                                   content_type='multipart/form-data', headers=USER_HEADERS)

        assert response.status_code == 200
        body = response.get_json()
        assert body['fileHash'] == PDF_HASH
        assert body['uploadId'] == 9
        assert body['userId'] == 'u1'
        blob.upload_file.assert_called_once()

    def test_upload_rejects_non_pdf(self, client, blob) -> None:
        form = {'file': (io.BytesIO(b'GIF89a'), 'photo.gif', 'image/gif'), 'documentType': 'bl'}
        with patch('importflow.routes.ocr.get_blob_service', return_value=blob):
            response = client.post('/api/ocr/upload', data=form, content_type='multipart/form-data')
        assert response.status_code == 400

    def test_upload_without_storage(self, client) -> None:
        with patch('importflow.routes.ocr.get_blob_service', return_value=None):
            response = client.post('/api/ocr/upload', data=_pdf_form(documentType='bl'),
                                   content_type='multipart/form-data')
        assert response.status_code == 503

    def test_extract_sync(self, client) -> None:
        service = MagicMock()
        service.start_extraction.return_value = {'documentType': 'bl', 'structuredResult': {}}
        with patch('importflow.routes.ocr.get_ocr_extraction_service', return_value=service):
            response = client.post('/api/ocr/extract-multi', json={
                'storagePath': 'u1/a.pdf', 'fileType': '.pdf', 'documentType': 'bl'
            }, headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.get_json()['data']['documentType'] == 'bl'
        service.start_extraction.assert_called_once_with('u1/a.pdf', '.pdf', 'bl', 'u1')

    def test_extract_async_ticket(self, client) -> None:
        service = MagicMock()
        service.start_extraction.return_value = {'status': 'processing', 'requestId': 'r1'}
        with patch('importflow.routes.ocr.get_ocr_extraction_service', return_value=service):
            response = client.post('/api/ocr/extract-multi', json={
                'storagePath': 'u1/a.pdf', 'fileType': '.pdf', 'documentType': 'bl'
            })
        assert response.status_code == 202

    def test_extract_unavailable(self, client) -> None:
        with patch('importflow.routes.ocr.get_ocr_extraction_service', return_value=None):
            response = client.post('/api/ocr/extract-multi', json={'storagePath': 'x'})
        assert response.status_code == 503

    @pytest.mark.parametrize('status, code', [
        ({'status': 'not_found'}, 404),
        ({'status': 'processing', 'timestamp': 1.0, 'elapsedTime': 10}, 202),
        ({'status': 'failed', 'error': 'boom'}, 500),
    ])
    def test_status_codes(self, client, status, code) -> None:
        service = MagicMock()
        service.check_status.return_value = status
        with patch('importflow.routes.ocr.get_ocr_extraction_service', return_value=service):
            response = client.get('/api/ocr/extract-multi/status?requestId=r1')
        assert response.status_code == code

    def test_status_completed(self, client) -> None:
        service = MagicMock()
        service.check_status.return_value = {'status': 'completed', 'result': {'rawText': '{}'}}
        with patch('importflow.routes.ocr.get_ocr_extraction_service', return_value=service):
            body = client.get('/api/ocr/extract-multi/status?requestId=r1').get_json()
        assert body == {'status': 'completed', 'success': True, 'data': {'rawText': '{}'}}


class TestDocumentRoutes:
    def test_types(self, client) -> None:
        body = client.get('/api/documents/types').get_json()
        assert 'proforma_invoice' in body['types']

    def test_prompts(self, client) -> None:
        assert client.get('/api/documents/passport/prompts').status_code == 404
        assert client.get('/api/documents/bl/prompts?step=99').status_code == 400
        body = client.get('/api/documents/bl/prompts?step=1').get_json()
        assert body['step'] == 1
        assert body['prompt']

    def test_process_rejects_bad_structure(self, client) -> None:
        response = client.post('/api/documents/process', json={
            'documentType': 'proforma_invoice', 'extractedData': {'items': {'data': []}}
        })
        assert response.status_code == 400
        assert response.get_json()['details']

    def test_save_requires_fields(self, client) -> None:
        assert client.post('/api/documents/save', json={'documentType': 'bl'}).status_code == 400

    def test_save(self, client, nocodb) -> None:
        response = client.post('/api/documents/save', json={
            'documentType': 'bl',
            'data': {'header': {'data': {'bl_number': 'BL-1'}}, 'containers': {'data': []}},
            'fileHash': PDF_HASH,
        }, headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.get_json()['documentId'] == 'BL-1'

    def test_save_unknown_type(self, client) -> None:
        response = client.post('/api/documents/save', json={
            'documentType': 'passport', 'data': {'header': {}}, 'fileHash': PDF_HASH
        })
        assert response.status_code == 400

    def test_cache_lookup(self, client, nocodb) -> None:
        assert client.get('/api/documents/cache/short').status_code == 400
        assert client.get(f'/api/documents/cache/{PDF_HASH}?type=unknown').status_code == 400
        assert client.get(f'/api/documents/cache/{PDF_HASH}').status_code == 404

        nocodb.find_by_field.return_value = {
            'Id': 3, 'hashArquivo': PDF_HASH, 'statusProcessamento': 'completo',
            'tipoDocumento': 'proforma_invoice', 'idDocumento': 'PI-1',
        }
        nocodb.find.return_value = rows({'invoiceNumber': 'PI-1'})
        response = client.get(f'/api/documents/cache/{PDF_HASH}')

        assert response.status_code == 200
        assert response.headers['Cache-Control'] == 'private, max-age=300'
        assert response.get_json()['structuredResult']['header']['data'] == {'invoice_number': 'PI-1'}

    def test_cache_lookup_incomplete(self, client, nocodb) -> None:
        nocodb.find_by_field.return_value = {'Id': 3, 'statusProcessamento': 'pendente'}
        body = client.get(f'/api/documents/cache/{PDF_HASH}').get_json()
        assert body['success'] is False
        assert body['status'] == 'pendente'

    def test_check_existing_miss(self, client, nocodb) -> None:
        nocodb.find.return_value = rows({'Id': 4, 'hashArquivo': 'b' * 64, 'statusProcessamento': 'completo',
                                         'tipoDocumento': 'bl'})
        body = client.post('/api/documents/check-existing', data=_pdf_form(),
                           content_type='multipart/form-data').get_json()

        assert body['exists'] is False
        assert body['fileHash'] == PDF_HASH
        assert body['sameNameUpload'] == {'id': 4, 'fileHash': 'b' * 64, 'documentType': 'bl'}

    def test_check_existing_hit(self, client, nocodb) -> None:
        nocodb.find_by_field.return_value = {'Id': 3, 'statusProcessamento': 'completo', 'tipoDocumento': 'bl'}
        nocodb.count.return_value = 1
        nocodb.find.return_value = rows({'processo_importacao': '7'})
        nocodb.find_one.return_value = {'Id': 7, 'numero_processo': 'IMP-7'}

        body = client.post('/api/documents/check-existing', data=_pdf_form(),
                           content_type='multipart/form-data').get_json()

        assert body['exists'] is True
        assert body['uploadRecord']['isSaved'] is True
        assert body['processInfo']['processCount'] == 1
        assert body['processInfo']['processes'][0]['numeroProcesso'] == 'IMP-7'

    def test_identify(self, client, nocodb, blob, llm) -> None:
        nocodb.create.return_value = {'Id': 12}
        single = {'extractedData': {'tipo': 'BILL_OF_LADING', 'document_number': 'BL-9'}}
        with patch('importflow.routes.documents.get_llm_service', return_value=llm), \
                patch('importflow.routes.documents.get_blob_service', return_value=blob), \
                patch('importflow.routes.documents.extract_single_prompt', return_value=single):
            response = client.post('/api/documents/identify', data=_pdf_form(),
                                   content_type='multipart/form-data')

        assert response.status_code == 200
        body = response.get_json()
        assert body['identification']['mappedType'] == 'bl'
        assert body['nextStep']['shouldProcess'] is True
        nocodb.update.assert_called_with(NOCODB_TABLES['DOCUMENT_UPLOADS'], 12, {'tipoDocumento': 'bl'})

    def test_identify_without_llm(self, client) -> None:
        with patch('importflow.routes.documents.get_llm_service', return_value=None):
            response = client.post('/api/documents/identify', data=_pdf_form(),
                                   content_type='multipart/form-data')
        assert response.status_code == 503

    def test_connect_process(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 7, 'numero_processo': 'IMP-7'}
        nocodb.find_by_field.return_value = {'Id': 7, 'numero_processo': 'IMP-7', 'documentsPipeline': None}
        nocodb.create.return_value = {'Id': 30}

        response = client.post('/api/documents/connect-process', json={
            'processId': 7, 'documentType': 'bl', 'fileHash': PDF_HASH, 'documentId': 'BL-1'
        })

        assert response.status_code == 200
        body = response.get_json()
        assert body['relationId'] == 30
        assert body['pipelineEntry']['documentId'] == 'BL-1'

    def test_connect_process_validation(self, client) -> None:
        response = client.post('/api/documents/connect-process', json={'processId': 7})
        assert response.status_code == 400
        assert response.get_json()['details']

    def test_connect_unknown_process(self, client) -> None:
        response = client.post('/api/documents/connect-process', json={
            'processId': 7, 'documentType': 'bl', 'fileHash': PDF_HASH
        })
        assert response.status_code == 404

    def test_connection_status(self, client, nocodb) -> None:
        assert client.get('/api/documents/connect-process').status_code == 400
        nocodb.find.return_value = rows({'Id': 1})
        body = client.get(f'/api/documents/connect-process?fileHash={PDF_HASH}&processId=7').get_json()
        assert body == {'isLinked': True, 'processId': '7'}


class TestProcessRoutes:
    BASE = '/api/processo-importacao'

    def test_list(self, client, nocodb) -> None:
        nocodb.find.return_value = rows({'Id': 1}, {'Id': 2})
        body = client.get(f'{self.BASE}/list').get_json()
        assert body['total'] == 2

    def test_unavailable(self, client, monkeypatch) -> None:
        def not_configured():
            raise ValueError('NocoDB not configured')
        monkeypatch.setattr('importflow.routes.processes.get_nocodb_service', not_configured)
        assert client.get(f'{self.BASE}/list').status_code == 503

    def test_search_without_invoice(self, client) -> None:
        body = client.post(f'{self.BASE}/search', json={}).get_json()
        assert body['processes'] == []

    def test_check_requires_process_id(self, client) -> None:
        assert client.post(f'{self.BASE}/check', json={'x': 1}).status_code == 400
        assert client.post(f'{self.BASE}/check', json={'processId': 9}).status_code == 404

    def test_create_simple(self, client, nocodb) -> None:
        nocodb.create.return_value = {'Id': 5}
        body = client.post(f'{self.BASE}/create-simple', json={'invoiceNumber': 'INV-1'}).get_json()
        assert body['isNew'] is True
        assert body['message'] == 'Processo criado com sucesso'
        assert client.post(f'{self.BASE}/create-simple', json={}).status_code == 400

    def test_update_stage_blocked(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1, 'etapa': 'solicitado'}
        response = client.post(f'{self.BASE}/update-stage', json={
            'processId': 1, 'newStage': 'em_transporte_internacional'
        })

        assert response.status_code == 422
        body = response.get_json()
        assert body['canForce'] is True
        assert body['requiredDocuments'] == ['proforma_invoice', 'bl']

    def test_update_stage_forced(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1, 'etapa': 'solicitado'}
        response = client.post(f'{self.BASE}/update-stage', json={
            'processId': 1, 'newStage': 'em_transporte_internacional', 'force': True
        }, headers=USER_HEADERS)
        assert response.status_code == 200
        assert response.get_json()['newStage'] == 'em_transporte_internacional'

    def test_update_stage_invalid(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1}
        response = client.post(f'{self.BASE}/update-stage', json={'processId': 1, 'newStage': 'perdido'})
        assert response.status_code == 400

    def test_stage_info(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1, 'etapa': 'recebido'}
        body = client.get(f'{self.BASE}/update-stage?processId=1').get_json()
        assert body['currentStage'] == 'recebido'

    def test_delete_with_dependents(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1, 'numero_processo': 'IMP-1'}
        nocodb.delete.side_effect = NocoDBError('FOREIGN KEY constraint failed', 400)
        response = client.post(f'{self.BASE}/delete', json={'processId': 1})
        assert response.status_code == 409

    def test_delete(self, client, nocodb) -> None:
        assert client.post(f'{self.BASE}/delete', json={'processId': 1}).status_code == 404
        nocodb.find_one.return_value = {'Id': 1, 'numero_processo': 'IMP-1'}
        body = client.post(f'{self.BASE}/delete', json={'processId': 1}).get_json()
        assert body['message'] == 'Processo excluído com sucesso'

    def test_audit_logs(self, client, nocodb) -> None:
        assert client.get(f'{self.BASE}/audit-logs?processId=1&limit=abc').status_code == 400
        nocodb.find.side_effect = NocoDBError('Table not found', 404)
        body = client.get(f'{self.BASE}/audit-logs?processId=1').get_json()
        assert body['warning'] == 'Audit log table not configured'

    def test_create_audit_log(self, client, nocodb) -> None:
        nocodb.create.return_value = {'Id': 8}
        body = client.post(f'{self.BASE}/audit-logs', json={
            'processId': 1, 'processNumber': 'IMP-1', 'notes': 'conferido'
        }).get_json()

        assert body['logId'] == 8
        assert nocodb.create.call_args.args[1]['descricao_regra'] == 'Atualização manual. Observações: conferido'

    def test_documents(self, client, nocodb) -> None:
        nocodb.find_one.return_value = {'Id': 1, 'numero_processo': 'IMP-1'}
        nocodb.find.return_value = rows({'hash_arquivo_upload': 'h1'})
        nocodb.find_by_field.return_value = {'Id': 3, 'hashArquivo': 'h1', 'tipoDocumento': 'proforma_invoice'}

        body = client.get(f'{self.BASE}/documents?processId=1').get_json()

        assert body['total'] == 1
        assert body['documents'][0]['statusProcessamento'] == 'pendente'
        assert body['completionStatus']['completed'] == ['proforma_invoice']

    def test_remove_document(self, client) -> None:
        assert client.post(f'{self.BASE}/documents/delete', json={'processId': 1}).status_code == 400

    def test_connect_documents(self, client, nocodb) -> None:
        nocodb.create.return_value = {'Id': 44}
        body = client.post(f'{self.BASE}/connect-documents', json={'processId': 1, 'fileHash': PDF_HASH}).get_json()
        assert body['relationId'] == 44

    def test_migrate_stages(self, client, nocodb) -> None:
        nocodb.find.return_value = rows({'Id': 1, 'etapa': 'Recebido'})
        body = client.post(f'{self.BASE}/migrate-stages').get_json()
        assert body['success'] is True
        assert body['migratedCount'] == 1


class TestAnalysisRoutes:
    def test_find_strict(self, client, nocodb) -> None:
        nocodb.find.return_value = rows({'Id': 1, 'invoiceNumber': 'INV-1'}, {'Id': 2, 'invoiceNumber': 'INV-2'})
        body = client.post('/api/analysis/find-process', json={
            'documentData': {'invoiceNumber': 'INV-2'}, 'searchMode': 'strict'
        }).get_json()
        assert [p['Id'] for p in body['matches']] == [2]

    def test_find_bad_mode(self, client) -> None:
        response = client.post('/api/analysis/find-process', json={
            'documentData': {}, 'searchMode': 'psychic'
        })
        assert response.status_code == 400

    def test_find_by_invoice(self, client, nocodb) -> None:
        assert client.get('/api/analysis/find-process').status_code == 400
        nocodb.find.return_value = rows({'Id': 1, 'invoiceNumber': 'INV-1'})
        body = client.get('/api/analysis/find-process?invoiceNumber=INV-1').get_json()
        assert body['searchMode'] == 'strict'
        assert len(body['matches']) == 1


class TestReportRoutes:
    RESULT = {
        'processId': 1,
        'comparisonType': 'proforma_vs_commercial',
        'summary': {'totalFields': 1, 'matchingFields': 1, 'discrepancies': 0, 'matchPercentage': 100.0},
        'fields': [{'field': 'Invoice Number', 'match': True, 'proforma': 'PI-1', 'commercial': 'PI-1'}],
    }

    def test_types(self, client) -> None:
        body = client.get('/api/reports/compare').get_json()
        assert len(body['comparisonTypes']) == 4

    def test_csv_download(self, client) -> None:
        with patch('importflow.routes.reports.get_llm_service', return_value=None), \
                patch.object(ComparisonService, 'compare', return_value=self.RESULT):
            response = client.post('/api/reports/compare', json={
                'processId': 1, 'comparisonType': 'proforma_vs_commercial', 'exportFormat': 'csv'
            })

        assert response.status_code == 200
        assert response.mimetype == 'text/csv'
        assert response.headers['Content-Disposition'] == (
            'attachment; filename="comparison_1_proforma_vs_commercial.csv"'
        )
        assert response.get_data(as_text=True).startswith('Field,Match,Proforma Invoice,Commercial Invoice')

    def test_json(self, client) -> None:
        with patch('importflow.routes.reports.get_llm_service', return_value=None), \
                patch.object(ComparisonService, 'compare', return_value=self.RESULT):
            body = client.post('/api/reports/compare', json={
                'processId': 1, 'comparisonType': 'proforma_vs_commercial'
            }).get_json()
        assert body['data']['summary']['matchPercentage'] == 100.0

    def test_errors(self, client) -> None:
        with patch('importflow.routes.reports.get_llm_service', return_value=None):
            assert client.post('/api/reports/compare', json={
                'processId': 1, 'comparisonType': 'bl_vs_di'
            }).status_code == 400
            assert client.post('/api/reports/compare', json={
                'processId': 1, 'comparisonType': 'di_vs_nota_fiscal'
            }).status_code == 404
            assert client.post('/api/reports/compare', json={'processId': 1}).status_code == 400
