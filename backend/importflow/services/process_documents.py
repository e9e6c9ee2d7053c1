"""
Process Document Service
Links uploaded documents (by file hash) to import processes and keeps the
documentsPipeline of each process in sync
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional
from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.document_cache import utc_now_iso
from importflow.services.nocodb import NocoDBService, get_nocodb_service

logger = logging.getLogger('importflow.process_documents')

# Document types tracked by the completion status of a process
TRACKED_DOCUMENT_TYPES = [
    'proforma_invoice',
    'commercial_invoice',
    'packing_list',
    'swift',
    'di',
    'numerario',
    'nota_fiscal',
]


def parse_pipeline(value: Any) -> List[Dict]:
    """documentsPipeline is stored as JSON text; tolerate lists and junk"""
    if not value:
        return []
    if isinstance(value, list):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable documentsPipeline")
        return []
    return parsed if isinstance(parsed, list) else []


class ProcessDocumentService:
    """Relations between PROCESSOS_IMPORTACAO and DOCUMENT_UPLOADS"""

    def __init__(self, nocodb: Optional[NocoDBService] = None):
        self.nocodb = nocodb or get_nocodb_service()
        self.relations_table = NOCODB_TABLES['PROCESSO_DOCUMENTO_REL']
        self.processes_table = NOCODB_TABLES['PROCESSOS_IMPORTACAO']
        self.uploads_table = NOCODB_TABLES['DOCUMENT_UPLOADS']

    @staticmethod
    def _relation_filter(process_id: Any, file_hash: str) -> str:
        return f"(processo_importacao,eq,{process_id})~and(hash_arquivo_upload,eq,{file_hash})"

    def _find_relation(self, process_id: Any, file_hash: str) -> Optional[Dict]:
        result = self.nocodb.find(
            self.relations_table,
            where=self._relation_filter(process_id, file_hash),
            limit=1
        )
        return result['list'][0] if result['list'] else None

    def link_document_to_process(self, process_id: Any, file_hash: str) -> Dict:
        """
        Create the relation unless it already exists

        Returns:
            The relation row (existing or new)
        """
        existing = self._find_relation(process_id, file_hash)
        if existing:
            logger.info(f"Document {file_hash[:12]} already linked to process {process_id}")
            return existing

        relation = self.nocodb.create(self.relations_table, {
            'processo_importacao': str(process_id),
            'hash_arquivo_upload': file_hash,
        })
        logger.info(f"🔗 Linked document {file_hash[:12]} to process {process_id}")
        return relation

    def get_process_by_number(self, process_number: str) -> Optional[Dict]:
        return self.nocodb.find_by_field(self.processes_table, 'numero_processo', process_number)

    def link_document_with_metadata(self, process_number: str, file_hash: str, metadata: Dict) -> Dict:
        """
        Link a document and upsert its documentsPipeline entry

        Args:
            process_number: numero_processo of the process
            metadata: documentType, status, documentId, uploadedAt, processedAt

        Raises:
            LookupError: no process with that number
        """
        process = self.get_process_by_number(process_number)
        if not process:
            raise LookupError(f"Processo {process_number} não encontrado")

        process_id = process['Id']
        relation = self.link_document_to_process(process_id, file_hash)

        document_type = metadata.get('documentType')
        entry = {
            'documentType': document_type,
            'status': metadata.get('status', 'completed'),
            'documentId': metadata.get('documentId'),
            'fileHash': file_hash,
            'uploadedAt': metadata.get('uploadedAt') or utc_now_iso(),
            'processedAt': metadata.get('processedAt') or utc_now_iso(),
        }

        pipeline = parse_pipeline(process.get('documentsPipeline'))
        for index, existing in enumerate(pipeline):
            if existing.get('fileHash') == file_hash or existing.get('documentType') == document_type:
                pipeline[index] = {**existing, **entry}
                break
        else:
            pipeline.append(entry)

        update = {'documentsPipeline': json.dumps(pipeline, ensure_ascii=False)}
        if document_type == 'proforma_invoice' and entry['documentId'] is not None:
            update['proforma_invoice_doc_id'] = str(entry['documentId'])

        self.nocodb.update(self.processes_table, process_id, update)
        return {'processId': process_id, 'relation': relation, 'pipelineEntry': entry}

    def remove_from_pipeline(self, process: Dict, file_hash: str) -> List[Dict]:
        pipeline = parse_pipeline(process.get('documentsPipeline'))
        remaining = [entry for entry in pipeline if entry.get('fileHash') != file_hash]
        if len(remaining) != len(pipeline):
            self.nocodb.update(self.processes_table, process['Id'], {
                'documentsPipeline': json.dumps(remaining, ensure_ascii=False)
            })
        return remaining

    def get_relations(self, process_id: Any, limit: int = 100) -> List[Dict]:
        return self.nocodb.find(
            self.relations_table,
            where=f"(processo_importacao,eq,{process_id})",
            limit=limit
        )['list']

    def get_process_documents(self, process_id: Any) -> Dict[str, List[Dict]]:
        """Upload rows linked to a process, grouped by tipoDocumento"""
        documents: Dict[str, List[Dict]] = {}
        for relation in self.get_relations(process_id):
            upload = self.nocodb.find_by_field(
                self.uploads_table, 'hashArquivo', relation.get('hash_arquivo_upload')
            )
            if not upload:
                continue
            documents.setdefault(upload.get('tipoDocumento') or 'unknown', []).append(upload)
        return documents

    def get_document_processes(self, file_hash: str) -> List[Dict]:
        """Relations that reference a file hash"""
        return self.nocodb.find(
            self.relations_table,
            where=f"(hash_arquivo_upload,eq,{file_hash})",
            limit=100
        )['list']

    def is_document_linked_to_process(self, process_id: Any, file_hash: str) -> bool:
        return self._find_relation(process_id, file_hash) is not None

    def find_process_by_document(self, file_hash: str) -> Optional[Dict]:
        relations = self.get_document_processes(file_hash)
        if not relations:
            return None
        return self.nocodb.find_one(self.processes_table, relations[0].get('processo_importacao'))

    def unlink_document_from_process(self, process_id: Any, file_hash: str) -> bool:
        """Returns False when there was nothing to unlink"""
        relation = self._find_relation(process_id, file_hash)
        if not relation:
            return False
        self.nocodb.delete(self.relations_table, relation['Id'])
        logger.info(f"Unlinked document {file_hash[:12]} from process {process_id}")
        return True

    def get_attached_document_types(self, process_id: Any) -> List[str]:
        return [
            document_type
            for document_type in self.get_process_documents(process_id)
            if document_type != 'unknown'
        ]

    def check_process_document_types(self, process_id: Any, types: Iterable[str]) -> Dict[str, bool]:
        attached = set(self.get_attached_document_types(process_id))
        return {document_type: document_type in attached for document_type in types}

    def get_process_completion_status(self, process_id: Any) -> Dict:
        present = self.check_process_document_types(process_id, TRACKED_DOCUMENT_TYPES)
        completed = [doc for doc, ok in present.items() if ok]
        missing = [doc for doc, ok in present.items() if not ok]
        return {
            'completed': completed,
            'missing': missing,
            'percentage': round(len(completed) / len(TRACKED_DOCUMENT_TYPES) * 100),
            'canProcessPhysicalReceipt': present['packing_list'] and present['commercial_invoice'],
            'canProcessFiscal': present['di'] and present['nota_fiscal'],
        }
