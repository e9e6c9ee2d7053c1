"""
OCR Extraction Service
Runs LLM extraction on stored PDFs in a worker pool, de-duplicating
concurrent requests for the same user, file and document type
"""
import hashlib
import math
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Dict, Optional
from importflow.config import config
from importflow.document_prompts import DOCUMENT_STEPS
from importflow.services.azure_blob import get_blob_service
from importflow.services.llm_client import get_llm_service, strip_json_fences
from importflow.services.multi_prompt import (
    count_pdf_pages,
    extract_single_prompt,
    extract_with_multiple_prompts,
)

logger = logging.getLogger('importflow.ocr')

CLEANUP_INTERVAL_SECONDS = 5 * 60
MAX_REQUEST_AGE_SECONDS = 15 * 60
STATUS_WAIT_SECONDS = 1

SUPPORTED_EXTRACTION_TYPES = set(DOCUMENT_STEPS.keys())
STATUS_ENDPOINT = '/api/ocr/extract-multi/status'


class ExtractionValidationError(ValueError):
    """Bad extraction request input"""


class OCRExtractionService:
    """Extraction orchestration with an in-memory map of active requests"""

    def __init__(
        self,
        blob_service,
        llm,
        max_workers: Optional[int] = None,
        async_threshold_mb: Optional[float] = None,
        start_sweeper: bool = True
    ):
        self.blob_service = blob_service
        self.llm = llm
        self.async_threshold = (async_threshold_mb or config.ASYNC_EXTRACTION_THRESHOLD_MB) * 1024 * 1024
        self.active_requests: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.EXTRACTION_WORKERS,
            thread_name_prefix='ocr-extract'
        )
        self._timer: Optional[threading.Timer] = None
        self._stopped = False
        if start_sweeper:
            self._schedule_cleanup()

    @staticmethod
    def build_request_id(user_id: str, storage_path: str, document_type: str) -> str:
        return hashlib.md5(f"{user_id}-{storage_path}-{document_type}".encode('utf-8')).hexdigest()

    # ------------------------------------------------------------------
    # Sweeper
    # ------------------------------------------------------------------

    def _schedule_cleanup(self) -> None:
        self._timer = threading.Timer(CLEANUP_INTERVAL_SECONDS, self._sweep)
        self._timer.daemon = True
        self._timer.start()

    def _sweep(self) -> None:
        try:
            self.cleanup_expired()
        finally:
            if not self._stopped:
                self._schedule_cleanup()

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        """Drop requests older than MAX_REQUEST_AGE_SECONDS; returns how many"""
        now = now if now is not None else time.time()
        with self._lock:
            expired = [
                request_id for request_id, entry in self.active_requests.items()
                if now - entry['timestamp'] > MAX_REQUEST_AGE_SECONDS
            ]
            for request_id in expired:
                del self.active_requests[request_id]
        if expired:
            logger.info(f"🧹 Removed {len(expired)} expired extraction request(s)")
        return len(expired)

    def _remove(self, request_id: str) -> None:
        with self._lock:
            self.active_requests.pop(request_id, None)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _validate(self, storage_path: str, file_type: str, document_type: str) -> None:
        if not storage_path:
            raise ExtractionValidationError('storagePath é obrigatório')
        if not document_type:
            raise ExtractionValidationError('documentType é obrigatório')
        if (file_type or '').lower() != '.pdf':
            raise ExtractionValidationError('Apenas arquivos PDF são suportados')
        if document_type not in SUPPORTED_EXTRACTION_TYPES:
            raise ExtractionValidationError(f'Tipo de documento não suportado: {document_type}')

    def _run(self, storage_path: str, document_type: str, request_id: str) -> Dict[str, Any]:
        logger.info("=" * 60)
        logger.info(f"🔍 OCR EXTRACTION: {document_type}")
        logger.info(f"   Request: {request_id}")
        logger.info("=" * 60)

        started = time.time()
        pdf_bytes = self.blob_service.download_file(storage_path)
        filename = storage_path.rsplit('/', 1)[-1]

        if document_type == 'unknown':
            single = extract_single_prompt(pdf_bytes, document_type, self.llm, filename)
            raw_text = single['text']
            payload = {
                'multiPrompt': None,
                'structuredResult': None,
                'extractedData': single['extractedData'],
                'rawText': raw_text,
                'ocrResults': [{'step': 1, 'text': raw_text}],
                'totalPages': single['totalPages'],
            }
            token_usage = single['metadata']['tokenUsage']
            steps_completed = 1
            multi_prompt = False
        else:
            multi = extract_with_multiple_prompts(pdf_bytes, document_type, self.llm, filename=filename)
            final = multi['finalResult']
            raw_text = final['rawText']
            payload = {
                'multiPrompt': multi,
                'structuredResult': final['structuredResult'],
                'extractedData': final['extractedData'],
                'rawText': raw_text,
                'ocrResults': multi['steps'],
                'totalPages': count_pdf_pages(pdf_bytes),
            }
            token_usage = multi['metadata']['totalTokenUsage']
            steps_completed = multi['totalSteps']
            multi_prompt = True

        processing_time = int((time.time() - started) * 1000)
        payload.update({
            'cleanedText': strip_json_fences(raw_text),
            'storagePath': storage_path,
            'documentType': document_type,
            'metadata': {
                'model': getattr(self.llm, 'model', None),
                'processingTime': processing_time,
                'tokenUsage': token_usage,
                'multiPrompt': multi_prompt,
                'stepsCompleted': steps_completed,
                'requestId': request_id,
            },
        })

        logger.info(f"✅ Extraction {request_id} finished in {processing_time}ms")
        return payload

    def _file_size(self, storage_path: str) -> int:
        try:
            return self.blob_service.get_file_size(storage_path)
        except Exception as e:
            logger.warning(f"Could not read size of {storage_path}: {e}")
            return 0

    def start_extraction(self, storage_path: str, file_type: str, document_type: str,
                         user_id: str = 'sistema') -> Dict[str, Any]:
        """
        Start (or join) an extraction

        Large files return a 'processing' ticket to poll with check_status;
        small files block until the result is ready.

        Raises:
            ExtractionValidationError: bad input
            Exception: whatever the extraction raised, for synchronous runs
        """
        self._validate(storage_path, file_type, document_type)
        request_id = self.build_request_id(user_id, storage_path, document_type)

        with self._lock:
            entry = self.active_requests.get(request_id)
            if entry and entry['future'].done() and entry['future'].exception() is not None:
                logger.info(f"Retrying failed extraction {request_id}")
                del self.active_requests[request_id]
                entry = None

            if entry:
                logger.info(f"Joining in-flight extraction {request_id}")
            else:
                future: Future = self._executor.submit(self._run, storage_path, document_type, request_id)
                entry = {'future': future, 'timestamp': time.time(), 'user_id': user_id}
                self.active_requests[request_id] = entry

        size = self._file_size(storage_path)
        if size > self.async_threshold:
            size_mb = size / (1024 * 1024)
            low = math.ceil(size_mb / 2)
            return {
                'status': 'processing',
                'requestId': request_id,
                'estimatedTime': f'{low}-{low + 2} minutos',
                'statusEndpoint': f'{STATUS_ENDPOINT}?requestId={request_id}',
            }

        try:
            return entry['future'].result()
        finally:
            self._remove(request_id)

    def check_status(self, request_id: str) -> Dict[str, Any]:
        """
        Returns:
            {'status': 'not_found' | 'completed' | 'processing' | 'failed', ...}
        """
        with self._lock:
            entry = self.active_requests.get(request_id)
        if not entry:
            return {'status': 'not_found'}

        try:
            result = entry['future'].result(timeout=STATUS_WAIT_SECONDS)
        except FutureTimeoutError:
            return {
                'status': 'processing',
                'timestamp': entry['timestamp'],
                'elapsedTime': int((time.time() - entry['timestamp']) * 1000),
            }
        except Exception as e:
            logger.error(f"Extraction {request_id} failed: {e}")
            self._remove(request_id)
            return {'status': 'failed', 'error': str(e)}

        self._remove(request_id)
        return {'status': 'completed', 'result': result}

    def shutdown(self) -> None:
        self._stopped = True
        if self._timer:
            self._timer.cancel()
        self._executor.shutdown(wait=False)


_instance: Optional[OCRExtractionService] = None
_instance_lock = threading.Lock()


def get_ocr_extraction_service() -> Optional[OCRExtractionService]:
    """Shared extraction service; None when storage or the LLM is unavailable"""
    global _instance
    with _instance_lock:
        if _instance is None:
            blob_service = get_blob_service()
            llm = get_llm_service()
            if not blob_service or not llm:
                logger.warning("OCR extraction unavailable (storage or LLM not configured)")
                return None
            _instance = OCRExtractionService(blob_service, llm)
        return _instance


def reset_ocr_extraction_service() -> None:
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.shutdown()
        _instance = None
