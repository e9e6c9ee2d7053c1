"""
Document Processors
Per-type processor registry: prompt steps, metadata and data validation
"""
import json
import re
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from importflow.document_prompts import build_prompt, get_step, get_steps

logger = logging.getLogger('importflow.processors')

_DATE_PATTERN = re.compile(r'^\d{2}/\d{2}/\d{4}$')
_EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_CONTAINER_PATTERN = re.compile(r'^[A-Z]{4}\d{7}$')
_NCM_PATTERN = re.compile(r'^\d{6,8}$')


# ---------------------------------------------------------------------------
# Shared validators
# ---------------------------------------------------------------------------

def validate_date(value: str) -> bool:
    """DD/MM/YYYY and a real calendar date"""
    if not isinstance(value, str) or not _DATE_PATTERN.match(value.strip()):
        return False
    try:
        datetime.strptime(value.strip(), '%d/%m/%Y')
        return True
    except ValueError:
        return False


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def validate_numeric(value: Any, min_value: Optional[float] = None, max_value: Optional[float] = None,
                     allow_decimals: bool = True) -> bool:
    number = _to_number(value)
    if number is None:
        return False
    if not allow_decimals and number % 1 != 0:
        return False
    if min_value is not None and number < min_value:
        return False
    if max_value is not None and number > max_value:
        return False
    return True


def validate_cnpj(value: str) -> bool:
    """14 digits with valid check digits"""
    digits = re.sub(r'\D', '', value or '')
    if len(digits) != 14 or len(set(digits)) == 1:
        return False

    def check_digit(base: str) -> int:
        total = 0
        weight = 2
        for char in reversed(base):
            total += int(char) * weight
            weight = 2 if weight == 9 else weight + 1
        remainder = total % 11
        return 0 if remainder < 2 else 11 - remainder

    first = check_digit(digits[:12])
    second = check_digit(digits[:12] + str(first))
    return digits[12:] == f"{first}{second}"


def validate_currency(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value >= 0
    if not isinstance(value, str):
        return False
    cleaned = re.sub(r'[^\d.,]', '', value)
    try:
        return float(cleaned.replace(',', '.')) >= 0
    except ValueError:
        return False


def validate_container_number(value: str) -> bool:
    return bool(value) and bool(_CONTAINER_PATTERN.match(str(value).strip().upper()))


def validate_ncm(value: str) -> bool:
    return bool(_NCM_PATTERN.match(re.sub(r'[.\s]', '', str(value or ''))))


def validate_email(value: str) -> bool:
    return bool(value) and bool(_EMAIL_PATTERN.match(str(value).strip()))


_FORMAT_CHECKS = {
    'date': (validate_date, 'INVALID_DATE', 'Data deve estar no formato DD/MM/YYYY'),
    'numeric': (validate_numeric, 'INVALID_NUMBER', 'Valor numérico inválido'),
    'cnpj': (validate_cnpj, 'INVALID_CNPJ', 'CNPJ inválido'),
    'currency': (validate_currency, 'INVALID_CURRENCY', 'Valor monetário inválido'),
    'container': (validate_container_number, 'INVALID_CONTAINER', 'Número de contêiner inválido'),
    'ncm': (validate_ncm, 'INVALID_NCM', 'Código NCM inválido'),
    'email': (validate_email, 'INVALID_EMAIL', 'E-mail inválido'),
}


# ---------------------------------------------------------------------------
# Per-type rules
# ---------------------------------------------------------------------------

# required: header fields that must be present (error)
# items: section that must be a non-empty list (error), or None
# formats: (section, field, check) verified when the field is filled (warning)
VALIDATION_RULES: Dict[str, Dict[str, Any]] = {
    'proforma_invoice': {
        'required': ['contracted_company', 'date', 'load_port', 'destination', 'total_price'],
        'items': 'items',
        'formats': [('header', 'date', 'date'), ('header', 'contracted_email', 'email'),
                    ('header', 'total_price', 'currency'), ('items', 'quantity', 'numeric'),
                    ('items', 'unit_price', 'currency')],
    },
    'commercial_invoice': {
        'required': ['invoice_number', 'shipper_company', 'consignee_company', 'total_amount_usd'],
        'items': 'items',
        'formats': [('header', 'invoice_date', 'date'), ('header', 'consignee_cnpj', 'cnpj'),
                    ('header', 'shipper_email', 'email'), ('header', 'total_amount_usd', 'currency'),
                    ('items', 'quantity', 'numeric'), ('items', 'amount_usd', 'currency')],
    },
    'packing_list': {
        'required': ['invoice', 'consignee'],
        'items': 'items',
        'formats': [('containers', 'container', 'container'), ('header', 'contracted_email', 'email'),
                    ('items', 'peso_bruto_total', 'numeric')],
    },
    'di': {
        'required': ['numero_DI', 'cnpj_importador', 'data_registro_DI'],
        'items': 'items',
        'formats': [('header', 'cnpj_importador', 'cnpj'), ('header', 'taxa_dolar', 'numeric'),
                    ('items', 'ncm_completa', 'ncm'), ('items', 'valor_total_item_usd', 'currency')],
    },
    'swift': {
        'required': ['message_type', 'currency', 'amount'],
        'items': None,
        'formats': [('header', 'value_date', 'date'), ('header', 'amount', 'currency')],
    },
    'numerario': {
        'required': ['invoice_number'],
        'items': None,
        'formats': [('header', 'cliente_cnpj', 'cnpj'), ('header', 'data_documento', 'date'),
                    ('header', 'valor_reais', 'currency')],
    },
    'nota_fiscal': {
        'required': ['numero_nf', 'chave_acesso', 'data_emissao'],
        'items': 'items',
        'formats': [('header', 'data_emissao', 'date'), ('items', 'ncm_sh', 'ncm')],
    },
    'bl': {
        'required': ['bl_number', 'shipper', 'consignee', 'port_of_loading', 'port_of_discharge'],
        'items': 'containers',
        'formats': [('header', 'issue_date', 'date'), ('header', 'cnpj_consignee', 'cnpj'),
                    ('header', 'total_weight_kg', 'numeric'), ('containers', 'container_number', 'container')],
    },
    'contrato_cambio': {
        'required': ['contrato', 'moeda', 'valor_estrangeiro'],
        'items': None,
        'formats': [('header', 'data', 'date'), ('header', 'taxa_cambial', 'numeric'),
                    ('header', 'valor_nacional', 'currency')],
    },
}


_SECTION_KEYS = {'data', 'source', 'metadata'}


def unwrap_section(section: Any) -> Any:
    """Accept both raw extracted data and structuredResult sections ({data: ...})"""
    if isinstance(section, dict) and 'data' in section and set(section) <= _SECTION_KEYS:
        section = section['data']
    if isinstance(section, str):
        try:
            return json.loads(section)
        except ValueError:
            return section
    return section


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class DocumentProcessor:
    """Prompt steps, metadata and validation for one document type"""

    supported_formats = ['pdf']

    def __init__(self, document_type: str, label: str, description: str):
        self.document_type = document_type
        self.label = label
        self.description = description

    @property
    def has_multi_step(self) -> bool:
        return len(get_steps(self.document_type)) > 1

    def get_steps(self) -> List[Dict]:
        return [step.to_dict() for step in get_steps(self.document_type)]

    def get_prompts(self) -> Dict[int, str]:
        return {step.step: step.prompt for step in get_steps(self.document_type)}

    def get_prompt_for_step(self, step: int, previous_result: Optional[str] = None) -> str:
        prompt_step = get_step(self.document_type, step)
        if prompt_step is None:
            raise ValueError(f"Invalid step {step} for {self.document_type}")
        return build_prompt(prompt_step, previous_result)

    def get_info(self) -> Dict:
        return {
            'type': self.document_type,
            'label': self.label,
            'description': self.description,
            'supportedFormats': self.supported_formats,
            'hasMultiStep': self.has_multi_step,
            'totalSteps': len(get_steps(self.document_type)),
        }

    def validate(self, data: Dict) -> Dict:
        """
        Validate extracted data

        Returns:
            Dict with isValid, errors [{field, message, code}] and
            warnings [{field, message, suggestion}]
        """
        rules = VALIDATION_RULES.get(self.document_type, {})
        errors: List[Dict] = []
        warnings: List[Dict] = []
        data = data or {}

        if self.document_type == 'swift' and 'header' not in data:
            header = data
        else:
            header = unwrap_section(data.get('header')) or {}
        if not isinstance(header, dict):
            header = {}

        if not header:
            errors.append({'field': 'header', 'message': 'Dados de cabeçalho não encontrados',
                           'code': 'MISSING_HEADER'})

        for field in rules.get('required', []):
            if header and _is_blank(header.get(field)):
                errors.append({
                    'field': field,
                    'message': f'Campo obrigatório não encontrado: {field}',
                    'code': 'MISSING_REQUIRED_FIELD',
                })

        items_key = rules.get('items')
        if items_key:
            items = unwrap_section(data.get(items_key))
            if not isinstance(items, list) or not items:
                errors.append({
                    'field': items_key,
                    'message': f'Nenhum registro encontrado em {items_key}',
                    'code': 'MISSING_ITEMS',
                })

        for section, field, check in rules.get('formats', []):
            validator, code, message = _FORMAT_CHECKS[check]
            rows = [header] if section == 'header' else unwrap_section(data.get(section))
            if not isinstance(rows, list):
                continue
            for index, row in enumerate(rows):
                if not isinstance(row, dict) or _is_blank(row.get(field)):
                    continue
                if not validator(row[field]):
                    name = field if section == 'header' else f'{section}[{index}].{field}'
                    warnings.append({'field': name, 'message': message, 'suggestion': code})

        logger.debug(f"Validated {self.document_type}: {len(errors)} errors, {len(warnings)} warnings")
        return {'isValid': not errors, 'errors': errors, 'warnings': warnings}


_PROCESSORS: Dict[str, DocumentProcessor] = {
    processor.document_type: processor for processor in [
        DocumentProcessor('proforma_invoice', 'Proforma Invoice',
                          'Fatura proforma com cabeçalho e itens'),
        DocumentProcessor('commercial_invoice', 'Commercial Invoice',
                          'Fatura comercial com cabeçalho e itens'),
        DocumentProcessor('packing_list', 'Packing List',
                          'Romaneio com contêineres e distribuição de itens'),
        DocumentProcessor('di', 'Declaração de Importação',
                          'DI com adições, itens e tributos'),
        DocumentProcessor('swift', 'SWIFT', 'Mensagem de transferência internacional MT103'),
        DocumentProcessor('numerario', 'Numerário', 'Fechamento financeiro ou prestação de contas'),
        DocumentProcessor('nota_fiscal', 'Nota Fiscal', 'NF-e de entrada com produtos'),
        DocumentProcessor('bl', 'Bill of Lading', 'Conhecimento de embarque com contêineres'),
        DocumentProcessor('contrato_cambio', 'Contrato de Câmbio', 'Contrato de câmbio da operação'),
    ]
}


def get_processor(document_type: str) -> DocumentProcessor:
    """
    Raises:
        ValueError: no processor for the type
    """
    processor = _PROCESSORS.get(document_type)
    if processor is None:
        raise ValueError(f"Unsupported document type: {document_type}")
    return processor


def has_processor(document_type: str) -> bool:
    return document_type in _PROCESSORS


def get_supported_types() -> List[str]:
    return list(_PROCESSORS.keys())


def get_all_type_infos() -> List[Dict]:
    return [processor.get_info() for processor in _PROCESSORS.values()]


def get_statistics() -> Dict:
    return {
        'totalProcessors': len(_PROCESSORS),
        'multiStepProcessors': sum(1 for p in _PROCESSORS.values() if p.has_multi_step),
        'supportedFormats': sorted({fmt for p in _PROCESSORS.values() for fmt in p.supported_formats}),
        'documentTypes': get_supported_types(),
    }


def validate_document(data: Dict, document_type: str) -> Dict:
    return get_processor(document_type).validate(data)


# Sections a structuredResult must carry before it is saved
_REQUIRED_SECTIONS: Dict[str, Dict[str, List[str]]] = {
    'proforma_invoice': {'dict': ['header'], 'list': ['items']},
    'commercial_invoice': {'dict': ['header'], 'list': ['items']},
    'packing_list': {'dict': ['header'], 'list': []},
    'di': {'dict': ['header'], 'list': []},
    'nota_fiscal': {'dict': ['header'], 'list': []},
    'swift': {'dict': ['header'], 'list': []},
    'bl': {'dict': ['header'], 'list': []},
    'contrato_cambio': {'dict': ['header'], 'list': []},
}


def validate_structure(document_type: str, data: Dict) -> List[str]:
    """
    Check the shape of a structuredResult before saving

    Returns:
        List of problems; empty when the structure is usable
    """
    if not isinstance(data, dict):
        return ['Dados estruturados ausentes']

    if document_type == 'numerario':
        if unwrap_section(data.get('diInfo')) or unwrap_section(data.get('header')):
            return []
        return ['Numerário requer diInfo.data ou header.data']

    required = _REQUIRED_SECTIONS.get(document_type)
    if required is None:
        return [f'Tipo de documento não suportado: {document_type}']

    problems = []
    for key in required['dict']:
        if not isinstance(unwrap_section(data.get(key)), dict):
            problems.append(f'{key}.data ausente ou inválido')
    for key in required['list']:
        if not isinstance(unwrap_section(data.get(key)), list):
            problems.append(f'{key}.data deve ser uma lista')
    return problems
