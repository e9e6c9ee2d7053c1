"""
OCR Upload Service
Stores an uploaded PDF once per content hash and registers it in DOCUMENT_UPLOADS
"""
import os
import logging
from typing import Any, Dict, Optional
from importflow.config import config
from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.azure_blob import AzureBlobService
from importflow.services.document_cache import (
    DocumentCacheService,
    STATUS_COMPLETE,
    STATUS_PENDING,
    utc_now_iso,
)
from importflow.services.nocodb import NocoDBService, get_nocodb_service

logger = logging.getLogger('importflow.upload')

PDF_CONTENT_TYPE = 'application/pdf'
CACHE_HIT_MESSAGE = 'Documento já processado anteriormente. Dados recuperados do cache.'


class UploadValidationError(ValueError):
    """Bad upload input (wrong type, too large, empty)"""


class OCRUploadService:
    """Upload step of the OCR flow"""

    def __init__(self, blob_service: Optional[AzureBlobService], nocodb: Optional[NocoDBService] = None,
                 max_size_mb: Optional[int] = None):
        self.blob_service = blob_service
        self.nocodb = nocodb or get_nocodb_service()
        self.cache = DocumentCacheService(self.nocodb)
        self.uploads_table = NOCODB_TABLES['DOCUMENT_UPLOADS']
        self.max_size = (max_size_mb or config.MAX_UPLOAD_SIZE_MB) * 1024 * 1024

    def validate(self, file_bytes: bytes, original_name: str, content_type: Optional[str]) -> None:
        if not file_bytes:
            raise UploadValidationError('Arquivo vazio ou não enviado')
        is_pdf = (content_type or '').lower() == PDF_CONTENT_TYPE or original_name.lower().endswith('.pdf')
        if not is_pdf:
            raise UploadValidationError('Apenas arquivos PDF são aceitos')
        if len(file_bytes) > self.max_size:
            raise UploadValidationError(
                f'Arquivo excede o tamanho máximo de {self.max_size // (1024 * 1024)}MB'
            )

    def _result(self, upload: Dict, document_type: str, user_id: str, from_cache: bool = False,
                structured: Optional[Dict] = None, message: Optional[str] = None) -> Dict[str, Any]:
        storage_path = upload.get('caminhoArmazenamento') or ''
        return {
            'id': os.path.splitext(os.path.basename(storage_path))[0] or str(upload.get('Id')),
            'filename': os.path.basename(storage_path),
            'originalName': upload.get('nomeOriginal'),
            'size': upload.get('tamanhoArquivo'),
            'documentType': document_type,
            'fileType': '.pdf',
            'storagePath': storage_path,
            'publicUrl': upload.get('urlPublica'),
            'fileHash': upload.get('hashArquivo'),
            'userId': user_id,
            'uploadId': upload.get('Id'),
            'fromCache': from_cache,
            'isAlreadySaved': structured is not None,
            'structuredResult': structured,
            'message': message or 'Upload realizado com sucesso',
        }

    def upload(
        self,
        file_bytes: bytes,
        original_name: str,
        content_type: Optional[str],
        document_type: str,
        user: Dict[str, str]
    ) -> Dict[str, Any]:
        """
        Upload a document, reusing an earlier upload of the same content

        Args:
            user: {'id': ..., 'email': ...}

        Raises:
            UploadValidationError: not a PDF, empty or too large
            ValueError: storage is not configured and a new upload is needed
        """
        self.validate(file_bytes, original_name, content_type)
        user_id = user.get('id') or 'sistema'

        file_hash = AzureBlobService.generate_file_hash(file_bytes)
        logger.info(f"📄 Upload {original_name} ({len(file_bytes)} bytes) hash={file_hash[:16]}...")

        existing = self.cache.check_existing_document(file_hash)
        if existing:
            status = existing.get('statusProcessamento')
            self.nocodb.update(self.uploads_table, existing['Id'], {
                'dataUpload': utc_now_iso(),
                'tipoDocumento': document_type,
                'nomeOriginal': original_name,
                'statusProcessamento': status if status == STATUS_COMPLETE else STATUS_PENDING,
            })
            existing = {**existing, 'nomeOriginal': original_name}

            if status == STATUS_COMPLETE:
                structured = self.cache.reconstruct_structured_result(existing, document_type)
                if structured:
                    logger.info("   ♻️ Served from cache")
                    return self._result(existing, document_type, user_id, from_cache=True,
                                        structured=structured, message=CACHE_HIT_MESSAGE)

            logger.info("   Reusing stored file; no new upload")
            return self._result(existing, document_type, user_id,
                                message='Arquivo já enviado anteriormente. Reutilizando arquivo armazenado.')

        if not self.blob_service:
            raise ValueError('Armazenamento de arquivos não configurado')

        stored = self.blob_service.upload_file(
            file_bytes,
            original_name,
            content_type or PDF_CONTENT_TYPE,
            user_id
        )

        record = self.nocodb.create(self.uploads_table, {
            'hashArquivo': file_hash,
            'caminhoArmazenamento': stored['path'],
            'urlPublica': stored['public_url'],
            'nomeOriginal': original_name,
            'tamanhoArquivo': len(file_bytes),
            'tipoMime': content_type or PDF_CONTENT_TYPE,
            'tipoDocumento': document_type,
            'idUsuario': user_id,
            'emailUsuario': user.get('email') or '',
            'dataUpload': utc_now_iso(),
            'statusProcessamento': STATUS_PENDING,
        }) or {}

        upload = {
            'Id': record.get('Id'),
            'hashArquivo': file_hash,
            'caminhoArmazenamento': stored['path'],
            'urlPublica': stored['public_url'],
            'nomeOriginal': original_name,
            'tamanhoArquivo': len(file_bytes),
        }
        logger.info(f"✅ Stored at {stored['path']}")
        return self._result(upload, document_type, user_id)
