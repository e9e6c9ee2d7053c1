"""
Document Comparison Service
Cross-checks header fields of the documents attached to a process
(proforma vs commercial invoice, DI vs nota fiscal, ...) for reports
"""
import csv
import io
import json
import re
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from importflow.services.document_cache import DocumentCacheService
from importflow.services.document_processors import unwrap_section
from importflow.services.nocodb import NocoDBService, get_nocodb_service
from importflow.services.process_documents import ProcessDocumentService

logger = logging.getLogger('importflow.reports')

COMPARISON_TYPES = [
    {
        'value': 'proforma_vs_commercial',
        'label': 'Proforma vs Commercial Invoice',
        'description': 'Compare proforma invoice with commercial invoice',
    },
    {
        'value': 'commercial_vs_packing',
        'label': 'Commercial Invoice vs Packing List',
        'description': 'Compare commercial invoice with packing list',
    },
    {
        'value': 'di_vs_nota_fiscal',
        'label': 'DI vs Nota Fiscal',
        'description': 'Compare import declaration with fiscal note',
    },
    {
        'value': 'full_process',
        'label': 'Full Process Comparison',
        'description': 'Compare all documents in the import process',
    },
]

# Column key in the result -> (document type, CSV header)
DOCUMENT_COLUMNS = {
    'proforma': ('proforma_invoice', 'Proforma Invoice'),
    'commercial': ('commercial_invoice', 'Commercial Invoice'),
    'packing': ('packing_list', 'Packing List'),
    'di': ('di', 'DI'),
    'notaFiscal': ('nota_fiscal', 'Nota Fiscal'),
}

# Field label -> header field per document column
COMPARISON_FIELDS: Dict[str, List[Dict[str, str]]] = {
    'proforma_vs_commercial': [
        {'name': 'Invoice Number', 'proforma': 'invoice_number', 'commercial': 'invoice_number'},
        {'name': 'Supplier', 'proforma': 'contracted_company', 'commercial': 'shipper_company'},
        {'name': 'Total Value', 'proforma': 'total_price', 'commercial': 'total_amount_usd'},
        {'name': 'Load Port', 'proforma': 'load_port', 'commercial': 'load_port'},
        {'name': 'Destination', 'proforma': 'destination', 'commercial': 'destination_port'},
    ],
    'commercial_vs_packing': [
        {'name': 'Invoice Number', 'commercial': 'invoice_number', 'packing': 'invoice'},
        {'name': 'Consignee', 'commercial': 'consignee_company', 'packing': 'consignee'},
        {'name': 'Notify Party', 'commercial': 'notify_party_company', 'packing': 'notify_party'},
        {'name': 'Load Port', 'commercial': 'load_port', 'packing': 'load_port'},
    ],
    'di_vs_nota_fiscal': [
        {'name': 'DI Number', 'di': 'numero_DI', 'notaFiscal': 'di_number'},
        {'name': 'Invoice Number', 'di': 'numero_invoice', 'notaFiscal': 'invoice_number'},
        {'name': 'Gross Weight', 'di': 'peso_bruto_total_kg', 'notaFiscal': 'peso_bruto'},
        {'name': 'Net Weight', 'di': 'peso_liquido_total_kg', 'notaFiscal': 'peso_liquido'},
    ],
    'full_process': [
        {'name': 'Invoice Number', 'proforma': 'invoice_number', 'commercial': 'invoice_number',
         'packing': 'invoice', 'di': 'numero_invoice', 'notaFiscal': 'invoice_number'},
        {'name': 'Supplier', 'proforma': 'contracted_company', 'commercial': 'shipper_company',
         'packing': 'contracted_company'},
        {'name': 'Total Value', 'proforma': 'total_price', 'commercial': 'total_amount_usd'},
        {'name': 'Load Port', 'proforma': 'load_port', 'commercial': 'load_port', 'packing': 'load_port'},
        {'name': 'Gross Weight', 'di': 'peso_bruto_total_kg', 'notaFiscal': 'peso_bruto'},
    ],
}

ANALYSIS_SYSTEM_PROMPT = (
    "You review import document discrepancies. Answer with a JSON object "
    "{\"summary\": str, \"criticalDiscrepancies\": [str], \"recommendations\": [str]}."
)

_ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}')


def normalize_value(value: Any) -> str:
    """Comparable form of a field value"""
    if value is None:
        return ''
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return f'{value:.2f}'
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, (list, tuple)):
        return ','.join(sorted(str(item) for item in value))

    text = str(value).strip()
    if _ISO_DATE.match(text):
        return text.split('T')[0]
    try:
        return f'{float(text):.2f}'
    except ValueError:
        return text.lower()


class ComparisonService:
    """Builds comparison reports for a process"""

    def __init__(self, nocodb: Optional[NocoDBService] = None, llm=None):
        self.nocodb = nocodb or get_nocodb_service()
        self.llm = llm
        self.cache = DocumentCacheService(self.nocodb)
        self.process_documents = ProcessDocumentService(self.nocodb)

    def _load_headers(self, process_id: Any, document_types: List[str]) -> Dict[str, Dict]:
        uploads_by_type = self.process_documents.get_process_documents(process_id)
        headers: Dict[str, Dict] = {}
        for document_type in document_types:
            uploads = uploads_by_type.get(document_type) or []
            if not uploads:
                continue
            structured = self.cache.reconstruct_structured_result(uploads[0], document_type)
            if structured:
                header = unwrap_section(structured.get('header'))
                if isinstance(header, dict):
                    headers[document_type] = header
        return headers

    def compare(self, process_id: Any, comparison_type: str, include_details: bool = True) -> Dict:
        """
        Compare the documents of a process

        Raises:
            ValueError: unknown comparison type
            LookupError: the process has no saved documents to compare
        """
        field_defs = COMPARISON_FIELDS.get(comparison_type)
        if field_defs is None:
            raise ValueError(f'Invalid comparison type: {comparison_type}')

        columns = [key for key in DOCUMENT_COLUMNS if any(key in fd for fd in field_defs)]
        headers = self._load_headers(process_id, [DOCUMENT_COLUMNS[key][0] for key in columns])
        if not headers:
            raise LookupError('No documents found for this process')

        logger.info(f"📊 Comparing {comparison_type} for process {process_id} "
                    f"({', '.join(headers.keys())})")

        fields = []
        for field_def in field_defs:
            row: Dict[str, Any] = {'field': field_def['name'], 'match': True}
            values = []
            for key in columns:
                document_type = DOCUMENT_COLUMNS[key][0]
                if key in field_def and document_type in headers:
                    value = headers[document_type].get(field_def[key])
                    row[key] = value
                    values.append(value)

            if len(values) > 1:
                normalized = [normalize_value(value) for value in values]
                row['match'] = all(value == normalized[0] for value in normalized)
                if not row['match']:
                    row['discrepancy'] = 'Values differ: ' + ' vs '.join(str(v) for v in values)
            fields.append(row)

        total = len(fields)
        matching = sum(1 for row in fields if row['match'])
        result = {
            'processId': process_id,
            'comparisonType': comparison_type,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'summary': {
                'totalFields': total,
                'matchingFields': matching,
                'discrepancies': total - matching,
                'matchPercentage': (matching / total * 100) if total else 100,
            },
            'fields': fields if include_details else [],
        }

        if result['summary']['discrepancies'] and include_details:
            result['aiAnalysis'] = self._analyze(comparison_type, fields, headers)
        return result

    def _analyze(self, comparison_type: str, fields: List[Dict], headers: Dict[str, Dict]) -> Dict:
        fallback = {
            'summary': 'Unable to generate AI analysis',
            'criticalDiscrepancies': [],
            'recommendations': [],
        }
        if self.llm is None:
            return fallback

        discrepant = [row for row in fields if not row['match']]
        prompt = (
            f"Comparison type: {comparison_type}\n"
            f"Number of discrepancies: {len(discrepant)}\n\n"
            "Discrepant fields:\n"
            + "\n".join(f"- {row['field']}: {row['discrepancy']}" for row in discrepant)
            + f"\n\nDocument context:\n{json.dumps(headers, ensure_ascii=False, indent=2, default=str)}\n\n"
            "Summarise the discrepancies, list the ones that could impact the import "
            "process and recommend how to resolve them."
        )
        try:
            parsed = self.llm.complete_json(ANALYSIS_SYSTEM_PROMPT, prompt)
        except Exception as e:
            logger.warning(f"AI comparison analysis failed: {e}")
            return fallback

        return {
            'summary': parsed.get('summary') or 'No summary available',
            'criticalDiscrepancies': parsed.get('criticalDiscrepancies') or [],
            'recommendations': parsed.get('recommendations') or [],
        }

    @staticmethod
    def to_csv(result: Dict) -> str:
        """Field, Match, one column per compared document, Discrepancy"""
        fields = result.get('fields') or []
        present = [key for key in DOCUMENT_COLUMNS if any(key in row for row in fields)]

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
        writer.writerow(['Field', 'Match'] + [DOCUMENT_COLUMNS[key][1] for key in present] + ['Discrepancy'])

        summary = result['summary']
        writer.writerow([])
        writer.writerow(['Summary', f"{summary['matchPercentage']:.1f}% match"])
        writer.writerow(['Total Fields', summary['totalFields']])
        writer.writerow(['Matching', summary['matchingFields']])
        writer.writerow(['Discrepancies', summary['discrepancies']])
        writer.writerow([])

        for row in fields:
            writer.writerow(
                [row['field'], 'Yes' if row['match'] else 'No']
                + [row.get(key, '') if row.get(key) is not None else '' for key in present]
                + [row.get('discrepancy', '')]
            )

        analysis = result.get('aiAnalysis')
        if analysis:
            writer.writerow([])
            writer.writerow(['AI Analysis'])
            writer.writerow(['Summary', analysis['summary']])
            writer.writerow(['Critical Discrepancies'])
            for item in analysis['criticalDiscrepancies']:
                writer.writerow(['', item])
            writer.writerow(['Recommendations'])
            for item in analysis['recommendations']:
                writer.writerow(['', item])

        return buffer.getvalue()
