"""Tests for the NocoDB REST client and table configuration."""

from unittest.mock import MagicMock, patch

import pytest

from importflow.nocodb_tables import (
    NOCODB_TABLES,
    TABLE_FIELD_MAPPINGS,
    flatten_swift_data,
    get_document_schema,
    get_table_id,
    transform_from_nocodb,
    transform_to_nocodb,
    unflatten_swift_data,
)
from importflow.services.nocodb import NocoDBError, NocoDBService, is_missing_table_error, where_eq


def _response(status_code: int = 200, body=None, text: str = '') -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = b'{}' if body is not None else text.encode()
    response.text = text
    if body is None:
        response.json.side_effect = ValueError('no json')
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def service() -> NocoDBService:
    return NocoDBService(base_url='https://noco.example.com/', api_token='secret', timeout=5)


class TestNocoDBService:
    def test_requires_configuration(self) -> None:
        with patch('importflow.services.nocodb.config') as config:
            config.NOCODB_API_URL = None
            config.NOCODB_API_TOKEN = None
            with pytest.raises(ValueError):
                NocoDBService()

    def test_base_url_is_normalised(self, service: NocoDBService) -> None:
        assert service.base_url == 'https://noco.example.com/api/v2'
        assert service.headers['xc-token'] == 'secret'

    def test_base_url_keeps_existing_api_suffix(self) -> None:
        service = NocoDBService(base_url='https://noco.example.com/api/v2', api_token='t')
        assert service.base_url == 'https://noco.example.com/api/v2'

    def test_find_builds_query(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body={'list': [{'Id': 1}]})
            result = service.find('tbl', where='(a,eq,1)', sort=['-CreatedAt', 'Id'], fields=['a', 'b'], limit=5)

        assert result['list'] == [{'Id': 1}]
        assert result['pageInfo'] == {}
        method, url = request.call_args.args
        assert method == 'GET'
        assert url == 'https://noco.example.com/api/v2/tables/tbl/records'
        assert request.call_args.kwargs['params'] == {
            'limit': 5, 'offset': 0, 'where': '(a,eq,1)', 'sort': '-CreatedAt,Id', 'fields': 'a,b'
        }
        assert request.call_args.kwargs['timeout'] == 5

    def test_update_sends_id_in_body(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body={'Id': 7})
            service.update('tbl', 7, {'status': 'ok'})

        assert request.call_args.args[0] == 'PATCH'
        assert request.call_args.kwargs['json'] == {'status': 'ok', 'Id': 7}

    def test_bulk_delete_sends_id_list(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body=[{'Id': 1}, {'Id': 2}])
            service.bulk_delete('tbl', [1, 2])

        assert request.call_args.kwargs['json'] == [{'Id': 1}, {'Id': 2}]

    def test_bulk_operations_skip_empty_lists(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            assert service.bulk_create('tbl', []) == []
            assert service.bulk_update('tbl', []) == []
            assert service.bulk_delete('tbl', []) == []
        request.assert_not_called()

    def test_error_message_comes_from_body(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(400, body={'msg': 'Invalid column'})
            with pytest.raises(NocoDBError) as exc_info:
                service.create('tbl', {'x': 1})

        assert str(exc_info.value) == 'Invalid column'
        assert exc_info.value.status_code == 400

    def test_error_message_falls_back_to_text(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(502, text='Bad Gateway')
            with pytest.raises(NocoDBError, match='Bad Gateway'):
                service.count('tbl')

    def test_find_one_returns_none_on_404(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(404, body={'msg': 'Record not found'})
            assert service.find_one('tbl', 99) is None

    def test_find_by_field_returns_first_row(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body={'list': [{'Id': 3, 'hashArquivo': 'abc'}]})
            row = service.find_by_field('tbl', 'hashArquivo', 'abc')

        assert row['Id'] == 3
        assert request.call_args.kwargs['params']['where'] == '(hashArquivo,eq,abc)'
        assert request.call_args.kwargs['params']['limit'] == 1

    @pytest.mark.parametrize('value, condition', [
        ('abc', '(nomeOriginal,eq,abc)'),
        (42, '(nomeOriginal,eq,42)'),
        ('Invoice (1).pdf', '(nomeOriginal,eq,"Invoice (1).pdf")'),
        ('a,b~c', '(nomeOriginal,eq,"a,b~c")'),
        ('say "hi" (x)', '(nomeOriginal,eq,"say \\"hi\\" (x)")'),
    ])
    def test_where_eq_quotes_filter_syntax(self, value, condition) -> None:
        assert where_eq('nomeOriginal', value) == condition

    def test_count(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body={'count': 4})
            assert service.count('tbl', where='(a,eq,1)') == 4
        assert request.call_args.args[1].endswith('/tables/tbl/records/count')

    def test_linked_records_path(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.request') as request:
            request.return_value = _response(body={'list': []})
            service.get_linked_records('tbl', 'lnk', 5)
        assert request.call_args.args[1].endswith('/tables/tbl/links/lnk/records/5')

    def test_health_check_never_raises(self, service: NocoDBService) -> None:
        with patch('importflow.services.nocodb.requests.get', side_effect=ConnectionError('down')):
            assert service.health_check() == {'healthy': False, 'message': 'down'}

    def test_missing_table_detection(self) -> None:
        assert is_missing_table_error(NocoDBError('Table not found'))
        assert is_missing_table_error(NocoDBError('relation does not exist'))
        assert not is_missing_table_error(NocoDBError('Invalid column'))


class TestTableConfiguration:
    def test_multi_table_types_need_table_type(self) -> None:
        assert get_table_id('di', 'TAX_INFO') == NOCODB_TABLES['DI']['TAX_INFO']
        with pytest.raises(ValueError):
            get_table_id('di')
        with pytest.raises(ValueError):
            get_table_id('bl', 'ITEMS')

    def test_single_table_types(self) -> None:
        assert get_table_id('swift') == NOCODB_TABLES['SWIFT']
        assert get_table_id('contrato_cambio') == NOCODB_TABLES['CONTRATO_CAMBIO']
        with pytest.raises(ValueError):
            get_table_id('passport')

    def test_transform_drops_unmapped_fields(self) -> None:
        mapping = TABLE_FIELD_MAPPINGS['PROFORMA_INVOICE_HEADER']
        row = transform_to_nocodb({'invoice_number': 'PI-1', 'total_price': '10', 'extra': 1}, mapping)
        assert row == {'invoiceNumber': 'PI-1', 'preco_total': '10'}
        assert transform_from_nocodb({**row, 'Id': 3}, mapping) == {'invoice_number': 'PI-1', 'total_price': '10'}

    def test_swift_parties_are_flattened(self) -> None:
        data = {
            'message_type': 'MT103',
            'beneficiary': {'account': '123', 'name': 'ACME', 'address': 'Shenzhen'},
            'ordering_customer': {'name': 'Importadora'},
        }
        flat = flatten_swift_data(data)
        assert flat == {
            'message_type': 'MT103',
            'beneficiary_account': '123',
            'beneficiary_name': 'ACME',
            'beneficiary_address': 'Shenzhen',
            'ordering_customer_name': 'Importadora',
        }

        nested = unflatten_swift_data(flat)
        assert nested['beneficiary'] == {'account': '123', 'name': 'ACME', 'address': 'Shenzhen'}
        assert nested['ordering_customer'] == {'name': 'Importadora', 'address': ''}
        assert 'receiver_institution' not in nested

    def test_document_schema(self) -> None:
        schema = get_document_schema('packing_list')
        assert schema['header_table'] == NOCODB_TABLES['PACKING_LIST']['HEADERS']
        assert [section for section, _, _ in schema['children']] == ['containers', 'items']
        assert schema['key_field'] == 'invoice'
        assert get_document_schema('swift')['flatten'] is True
        assert get_document_schema('numerario')['merge_di_info'] is True
        with pytest.raises(ValueError):
            get_document_schema('unknown')
