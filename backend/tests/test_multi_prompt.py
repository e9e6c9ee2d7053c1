"""Tests for prompt configuration and the multi-step LLM extraction."""

import json
from unittest.mock import MagicMock, patch

import pytest

from importflow.document_prompts import (
    DOCUMENT_STEPS,
    PREVIOUS_RESULT_LABEL,
    build_prompt,
    get_step,
    get_steps,
    map_identified_type,
)
from importflow.services.llm_client import parse_json_response, strip_json_fences
from importflow.services.multi_prompt import (
    count_pdf_pages,
    extract_single_prompt,
    extract_with_multiple_prompts,
)


def _fake_llm(*answers: str) -> MagicMock:
    llm = MagicMock()
    llm.extract_from_pdf.side_effect = [
        {'text': answer, 'usage': {'input_tokens': 10, 'output_tokens': 5}, 'processing_time': 3}
        for answer in answers
    ]
    return llm


class TestPrompts:
    def test_step_counts(self) -> None:
        counts = {document_type: len(steps) for document_type, steps in DOCUMENT_STEPS.items()}
        assert counts == {
            'bl': 2,
            'commercial_invoice': 3,
            'proforma_invoice': 2,
            'packing_list': 4,
            'swift': 1,
            'di': 3,
            'numerario': 3,
            'nota_fiscal': 2,
            'contrato_cambio': 1,
            'unknown': 1,
        }

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(ValueError):
            get_steps('passport')

    def test_get_step(self) -> None:
        assert get_step('di', 3).name
        assert get_step('di', 9) is None

    def test_previous_result_is_appended_only_when_expected(self) -> None:
        first, second = get_steps('bl')
        assert build_prompt(first, 'ignored') == first.prompt
        assert build_prompt(second, '{"bl_number": "X"}').endswith(
            f'{PREVIOUS_RESULT_LABEL}: {{"bl_number": "X"}}'
        )
        assert build_prompt(second, None) == second.prompt

    def test_step_serialises_camel_case(self) -> None:
        assert get_steps('bl')[1].to_dict()['expectsInput'] is True

    @pytest.mark.parametrize('label, expected', [
        ('PROFORMA_INVOICE', 'proforma_invoice'),
        ('bill_of_lading', 'bl'),
        ('NOTA_FISCAL_TRADING', 'nota_fiscal'),
        ('COMPROVANTE_CAMBIO', 'other'),
        ('DESCONHECIDO', 'unknown'),
        ('RECIBO', 'unknown'),
        (None, 'unknown'),
    ])
    def test_identified_type_mapping(self, label, expected) -> None:
        assert map_identified_type(label) == expected


class TestJsonParsing:
    def test_strip_fences(self) -> None:
        assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_json_fences('') == ''

    def test_parse_embedded_object(self) -> None:
        assert parse_json_response('Aqui está:\n{"a": [1, 2]}\nObrigado') == {'a': [1, 2]}

    def test_parse_failure(self) -> None:
        with pytest.raises(ValueError):
            parse_json_response('sem json aqui')


class TestMultiPromptExtraction:
    def test_packing_list_sections(self) -> None:
        llm = _fake_llm(
            '{"invoice": "INV-1"}',
            '[{"container": "MSCU1234567"}]',
            'Os pacotes 1-10 estão no contêiner MSCU1234567.',
            '```json\n[{"numero_item": 1, "container": "MSCU1234567"}]\n```',
        )
        progress = []
        result = extract_with_multiple_prompts(
            b'%PDF', 'packing_list', llm, on_progress=lambda *args: progress.append(args)
        )

        structured = result['finalResult']['structuredResult']
        assert structured['header']['data'] == {'invoice': 'INV-1'}
        assert structured['header']['source'] == 'step_1'
        assert structured['containers']['data'] == [{'container': 'MSCU1234567'}]
        assert structured['disposition_explanation']['data'].startswith('Os pacotes')
        assert structured['items']['data'] == [{'numero_item': 1, 'container': 'MSCU1234567'}]
        assert structured['processing_summary']['totalSteps'] == 4
        assert result['metadata']['totalTokenUsage'] == {
            'input_tokens': 40, 'output_tokens': 20, 'total_tokens': 60
        }
        assert [p[0] for p in progress] == [1, 2, 3, 4]

    def test_previous_answer_feeds_next_step(self) -> None:
        llm = _fake_llm('{"bl_number": "BL1"}', '[]')
        extract_with_multiple_prompts(b'%PDF', 'bl', llm)

        second_prompt = llm.extract_from_pdf.call_args_list[1].args[1]
        assert second_prompt.endswith(f'{PREVIOUS_RESULT_LABEL}: {{"bl_number": "BL1"}}')

    def test_commercial_invoice_enrichment_replaces_items(self) -> None:
        llm = _fake_llm('{"invoice_number": "CI-1"}', '[{"item_number": 1}]',
                        '[{"item_number": 1, "net_weight": 2}]')
        result = extract_with_multiple_prompts(b'%PDF', 'commercial_invoice', llm)

        items = result['finalResult']['structuredResult']['items']
        assert items['data'] == [{'item_number': 1, 'net_weight': 2}]
        assert items['source'] == 'step_3'

    def test_numerario_and_di_layouts(self) -> None:
        numerario = extract_with_multiple_prompts(
            b'%PDF', 'numerario', _fake_llm('{"di_number": "1"}', '{"valor_reais": 10}', '[]')
        )['finalResult']['extractedData']
        assert set(numerario) == {'diInfo', 'header', 'items'}

        di = extract_with_multiple_prompts(
            b'%PDF', 'di', _fake_llm('{"numero_DI": "1"}', '[]', '[]')
        )['finalResult']['structuredResult']
        assert {'header', 'items', 'taxInfo'} <= set(di)

    def test_swift_extracted_data_is_the_header(self) -> None:
        message = {'message_type': 'MT103', 'amount': '1000'}
        result = extract_with_multiple_prompts(b'%PDF', 'swift', _fake_llm(json.dumps(message)))
        assert result['finalResult']['extractedData'] == message

    def test_single_prompt_identification(self) -> None:
        llm = _fake_llm('{"tipo": "SWIFT", "document_number": "INV-9"}')
        with patch('importflow.services.multi_prompt.count_pdf_pages', return_value=2):
            result = extract_single_prompt(b'%PDF', 'unknown', llm)

        assert result['extractedData']['tipo'] == 'SWIFT'
        assert result['totalPages'] == 2
        assert result['metadata']['tokenUsage'] == {'input_tokens': 10, 'output_tokens': 5}

    def test_single_prompt_non_json_answer(self) -> None:
        with patch('importflow.services.multi_prompt.count_pdf_pages', return_value=1):
            result = extract_single_prompt(b'%PDF', 'unknown', _fake_llm('não sei'))
        assert result['extractedData'] is None
        assert result['text'] == 'não sei'

    def test_count_pages_of_invalid_pdf(self) -> None:
        assert count_pdf_pages(b'not a pdf') == 0
