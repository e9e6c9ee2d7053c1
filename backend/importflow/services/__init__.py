"""
Services Package
NocoDB persistence, blob storage, LLM extraction and import process logic
"""

from .business_rules import ProcessBusinessRules
from .nocodb import NocoDBError, NocoDBService, get_nocodb_service
from .ocr_extraction import OCRExtractionService, get_ocr_extraction_service
from .ocr_upload import OCRUploadService
from .process_service import ProcessService, StageTransitionBlocked

__all__ = [
    'ProcessBusinessRules',
    'NocoDBError',
    'NocoDBService',
    'get_nocodb_service',
    'OCRExtractionService',
    'get_ocr_extraction_service',
    'OCRUploadService',
    'ProcessService',
    'StageTransitionBlocked',
]
