"""
Document Cache Service
Read-through lookups keyed by file hash so that a document already
uploaded and extracted is never sent to the LLM again
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from importflow.nocodb_tables import (
    NOCODB_TABLES,
    NUMERARIO_DI_INFO_FIELDS,
    SOURCE_HASH_COLUMN,
    get_document_schema,
    transform_from_nocodb,
    unflatten_swift_data,
)
from importflow.services.nocodb import NocoDBService, get_nocodb_service, where_eq

logger = logging.getLogger('importflow.cache')

STATUS_PENDING = 'pendente'
STATUS_COMPLETE = 'completo'
STATUS_ERROR = 'erro'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _cache_section(data: Any) -> Dict:
    return {'data': data, 'source': 'cache', 'metadata': {'fromCache': True}}


class DocumentCacheService:
    """Lookups against DOCUMENT_UPLOADS and the per-type document tables"""

    def __init__(self, nocodb: Optional[NocoDBService] = None):
        self.nocodb = nocodb or get_nocodb_service()
        self.uploads_table = NOCODB_TABLES['DOCUMENT_UPLOADS']

    def check_existing_document(self, file_hash: str) -> Optional[Dict]:
        """Upload row for a file hash, or None"""
        return self.nocodb.find_by_field(self.uploads_table, 'hashArquivo', file_hash)

    def is_document_saved(self, file_hash: str, document_type: str) -> bool:
        """Whether the header table of the type already holds rows from this file"""
        try:
            schema = get_document_schema(document_type)
        except ValueError:
            return False
        return self.nocodb.count(
            schema['header_table'],
            where=f"({SOURCE_HASH_COLUMN},eq,{file_hash})"
        ) > 0

    def find_by_original_name(self, original_name: str) -> Optional[Dict]:
        """Most recent upload with this name, only when its processing completed"""
        result = self.nocodb.find(
            self.uploads_table,
            where=where_eq('nomeOriginal', original_name),
            sort='-dataUpload',
            limit=1
        )
        if not result['list']:
            return None
        upload = result['list'][0]
        return upload if upload.get('statusProcessamento') == STATUS_COMPLETE else None

    def _rows_for_hash(self, table_id: str, file_hash: str, limit: int = 1000) -> List[Dict]:
        return self.nocodb.find(
            table_id,
            where=f"({SOURCE_HASH_COLUMN},eq,{file_hash})",
            limit=limit
        )['list']

    def reconstruct_structured_result(self, upload: Dict, document_type: str) -> Optional[Dict]:
        """
        Rebuild the structuredResult of a saved document from NocoDB rows

        Returns:
            Same section layout the multi-prompt pipeline produces, or None
            when no header row exists for the file
        """
        file_hash = upload.get('hashArquivo')
        if not file_hash:
            return None

        try:
            schema = get_document_schema(document_type)
        except ValueError:
            logger.warning(f"No storage schema for {document_type}; cannot rebuild from cache")
            return None

        headers = self._rows_for_hash(schema['header_table'], file_hash, limit=1)
        if not headers:
            return None

        header = transform_from_nocodb(headers[0], schema['header_mapping'])
        if schema['flatten']:
            header = unflatten_swift_data(header)

        structured: Dict[str, Dict] = {'header': _cache_section(header)}

        if schema['merge_di_info']:
            structured['diInfo'] = _cache_section(
                {field: header.get(field) for field in NUMERARIO_DI_INFO_FIELDS}
            )

        for section, table_id, mapping in schema['children']:
            rows = self._rows_for_hash(table_id, file_hash)
            structured[section] = _cache_section([transform_from_nocodb(row, mapping) for row in rows])

        logger.info(f"📦 Rebuilt {document_type} from cache ({len(structured)} sections)")
        return structured

    def update_upload_status(self, upload_id: Any, document_id: Any = None,
                             status: str = STATUS_COMPLETE) -> Dict:
        data = {
            'statusProcessamento': status,
            'dataProcessamento': utc_now_iso(),
        }
        if document_id is not None:
            data['idDocumento'] = str(document_id)
        return self.nocodb.update(self.uploads_table, upload_id, data)

    def mark_upload_error(self, upload_id: Any, error: str) -> Dict:
        logger.warning(f"Upload {upload_id} marked as error: {error}")
        return self.nocodb.update(self.uploads_table, upload_id, {
            'statusProcessamento': STATUS_ERROR,
            'dataProcessamento': utc_now_iso(),
        })

    def get_document_data(self, file_hash: str, document_type: Optional[str] = None) -> Optional[Dict]:
        """
        Upload row plus its rebuilt structuredResult

        Returns:
            None when the hash is unknown, otherwise a dict with upload,
            documentType, isComplete and structuredResult (None until saved)
        """
        upload = self.check_existing_document(file_hash)
        if not upload:
            return None

        document_type = document_type or upload.get('tipoDocumento')
        is_complete = upload.get('statusProcessamento') == STATUS_COMPLETE
        structured = None
        if is_complete and document_type:
            structured = self.reconstruct_structured_result(upload, document_type)

        return {
            'upload': upload,
            'documentType': document_type,
            'isComplete': is_complete,
            'structuredResult': structured,
        }
