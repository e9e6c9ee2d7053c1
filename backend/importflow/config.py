"""
Configuration Management
Loads and validates environment variables
"""
import os
from typing import Optional

class Config:
    # NocoDB (system of record)
    NOCODB_API_URL: Optional[str] = os.getenv('NOCODB_API_URL')
    NOCODB_API_TOKEN: Optional[str] = os.getenv('NOCODB_API_TOKEN')
    NOCODB_TIMEOUT: int = int(os.getenv('NOCODB_TIMEOUT', '30'))

    # Azure Blob Storage (document files)
    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = os.getenv('AZURE_STORAGE_CONNECTION_STRING')
    AZURE_STORAGE_CONTAINER: str = os.getenv('AZURE_STORAGE_CONTAINER', 'import-documents')

    # Azure OpenAI (document OCR and analysis)
    AZURE_OPENAI_ENDPOINT: Optional[str] = os.getenv('AZURE_OPENAI_ENDPOINT')
    AZURE_OPENAI_KEY: Optional[str] = os.getenv('AZURE_OPENAI_KEY')
    AZURE_OPENAI_DEPLOYMENT: str = os.getenv('AZURE_OPENAI_DEPLOYMENT', 'gpt-4o')
    AZURE_OPENAI_API_VERSION: str = os.getenv('AZURE_OPENAI_API_VERSION', '2025-03-01-preview')

    # Upload / extraction limits
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv('MAX_UPLOAD_SIZE_MB', '20'))
    ASYNC_EXTRACTION_THRESHOLD_MB: int = int(os.getenv('ASYNC_EXTRACTION_THRESHOLD_MB', '5'))
    EXTRACTION_WORKERS: int = int(os.getenv('EXTRACTION_WORKERS', '4'))

    FLASK_ENV: str = os.getenv('FLASK_ENV', 'development')
    FLASK_DEBUG: bool = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'

    @classmethod
    def is_nocodb_configured(cls) -> bool:
        """Check if NocoDB API access is configured"""
        return bool(cls.NOCODB_API_URL and cls.NOCODB_API_TOKEN)

    @classmethod
    def is_storage_configured(cls) -> bool:
        """Check if Azure Blob Storage is configured"""
        return bool(cls.AZURE_STORAGE_CONNECTION_STRING)

    @classmethod
    def is_openai_configured(cls) -> bool:
        """Check if Azure OpenAI is properly configured"""
        return bool(
            cls.AZURE_OPENAI_ENDPOINT and
            cls.AZURE_OPENAI_DEPLOYMENT
        )

config = Config()
