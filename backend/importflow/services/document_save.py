"""
Document Save Service
Persists a reviewed structuredResult into the NocoDB tables of its type
"""
import json
import logging
from typing import Any, Dict, List, Optional
from importflow.nocodb_tables import (
    NOCODB_TABLES,
    SOURCE_HASH_COLUMN,
    flatten_swift_data,
    get_document_schema,
    transform_to_nocodb,
)
from importflow.services.document_cache import DocumentCacheService, STATUS_PENDING, utc_now_iso
from importflow.services.document_processors import unwrap_section
from importflow.services.nocodb import NocoDBService, get_nocodb_service
from importflow.services.process_documents import ProcessDocumentService

logger = logging.getLogger('importflow.save')

# Child section -> counter reported back to the caller
_CHILD_COUNTERS = {
    'items': 'itemsCreated',
    'containers': 'containersCreated',
    'taxInfo': 'taxInfoCreated',
}


def _as_rows(section: Any) -> List[Dict]:
    rows = unwrap_section(section)
    if isinstance(rows, dict):
        return [rows]
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


class DocumentSaveService:
    """Writes headers and child rows, then marks the upload complete"""

    def __init__(self, nocodb: Optional[NocoDBService] = None):
        self.nocodb = nocodb or get_nocodb_service()
        self.cache = DocumentCacheService(self.nocodb)
        self.process_documents = ProcessDocumentService(self.nocodb)

    def _header_data(self, document_type: str, data: Dict, schema: Dict) -> Dict:
        if document_type == 'swift' and 'header' not in data:
            header = data
        else:
            header = unwrap_section(data.get('header'))
        header = dict(header) if isinstance(header, dict) else {}

        if schema['merge_di_info']:
            di_info = unwrap_section(data.get('diInfo'))
            if isinstance(di_info, dict):
                for field, value in di_info.items():
                    if header.get(field) in (None, ''):
                        header[field] = value

        if schema['flatten']:
            header = flatten_swift_data(header)
        return header

    def _log_save(self, operation: str, document_type: str, document_id: Any,
                  user_id: str, details: Dict) -> None:
        """Audit trail of saves; never fails the save itself"""
        try:
            self.nocodb.create(NOCODB_TABLES['AUDIT']['DOCUMENT_SAVES'], {
                'operation': operation,
                'document_type': document_type,
                'document_id': str(document_id),
                'user_id': user_id,
                'details': json.dumps(details, ensure_ascii=False, default=str),
                'created_at': utc_now_iso(),
            })
        except Exception as e:
            logger.warning(f"Could not write document save log: {e}")

    def _write_rows(self, data: Dict, header: Dict, schema: Dict, file_hash: str) -> Dict[str, Any]:
        header_row = transform_to_nocodb(header, schema['header_mapping'])
        header_row[SOURCE_HASH_COLUMN] = file_hash
        header_record = self.nocodb.create(schema['header_table'], header_row) or {}
        header_id = header_record.get('Id')
        logger.info(f"   Header created: {header_id}")

        details: Dict[str, Any] = {'headerId': header_id}
        details.update({counter: 0 for counter in _CHILD_COUNTERS.values()})

        for section, table_id, mapping in schema['children']:
            rows = []
            for row in _as_rows(data.get(section)):
                mapped = transform_to_nocodb(row, mapping)
                mapped[SOURCE_HASH_COLUMN] = file_hash
                rows.append(mapped)
            if rows:
                self.nocodb.bulk_create(table_id, rows)
            details[_CHILD_COUNTERS.get(section, f'{section}Created')] = len(rows)
            logger.info(f"   {section}: {len(rows)} rows")
        return details

    def save_document(
        self,
        document_type: str,
        data: Dict,
        file_hash: str,
        user_id: str = 'sistema',
        process_id: Optional[Any] = None,
        operation: str = 'create'
    ) -> Dict:
        """
        Save a document

        Args:
            document_type: Internal type, e.g. 'proforma_invoice'
            data: structuredResult (sections may be {data: ...} or JSON text)
            file_hash: sha256 of the source file, stamped on every row
            process_id: When given, the document is linked to this process

        Returns:
            Dict with success, documentId and details (headerId and counters)

        Raises:
            ValueError: unknown type or missing header data
        """
        schema = get_document_schema(document_type)
        header = self._header_data(document_type, data or {}, schema)
        if not header:
            raise ValueError(f"Header data required to save {document_type}")

        logger.info("=" * 60)
        logger.info(f"💾 SAVING DOCUMENT: {document_type}")
        logger.info(f"   File hash: {file_hash[:16]}...")
        logger.info("=" * 60)

        upload = self.cache.check_existing_document(file_hash)
        try:
            details = self._write_rows(data or {}, header, schema, file_hash)
        except Exception as e:
            if upload:
                self.cache.mark_upload_error(upload['Id'], str(e))
            raise

        document_id = header.get(schema['key_field']) or details['headerId']

        if upload:
            self.cache.update_upload_status(upload['Id'], document_id)
        else:
            logger.warning(f"No upload record for {file_hash[:16]}; status not updated")

        if process_id is not None:
            self.process_documents.link_document_to_process(process_id, file_hash)

        self._log_save(operation, document_type, document_id, user_id, {
            'fileHash': file_hash,
            'processId': process_id,
            **details,
        })

        logger.info(f"✅ Document saved: {document_id}")
        return {'success': True, 'documentId': document_id, 'details': details}

    def reset_document(self, document_type: str, file_hash: str) -> Dict[str, int]:
        """
        Delete every row of a type that came from this file and set the
        upload back to pending

        Returns:
            Deleted row count per table id
        """
        schema = get_document_schema(document_type)
        tables = [schema['header_table']] + [table_id for _, table_id, _ in schema['children']]
        deleted = {}

        for table_id in tables:
            rows = self.nocodb.find(
                table_id,
                where=f"({SOURCE_HASH_COLUMN},eq,{file_hash})",
                limit=1000
            )['list']
            ids = [row['Id'] for row in rows if 'Id' in row]
            if ids:
                self.nocodb.bulk_delete(table_id, ids)
            deleted[table_id] = len(ids)

        upload = self.cache.check_existing_document(file_hash)
        if upload:
            self.nocodb.update(NOCODB_TABLES['DOCUMENT_UPLOADS'], upload['Id'], {
                'statusProcessamento': STATUS_PENDING,
                'idDocumento': None,
            })

        logger.info(f"♻️ Reset {document_type} for {file_hash[:16]}: {deleted}")
        return deleted

    def update_document(self, document_type: str, data: Dict, file_hash: str,
                        user_id: str = 'sistema', process_id: Optional[Any] = None) -> Dict:
        """Replace a saved document with new data"""
        self.reset_document(document_type, file_hash)
        return self.save_document(document_type, data, file_hash, user_id, process_id, operation='update')
