"""
Azure Blob Storage Service
Stores uploaded trade documents and serves them back for OCR extraction
"""
import hashlib
import os
import re
import time
import uuid
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Union, BinaryIO
from azure.storage.blob import BlobServiceClient, ContentSettings, generate_blob_sas, BlobSasPermissions
from azure.identity import DefaultAzureCredential
from importflow.config import config

logger = logging.getLogger('importflow.blob')

DELETE_FORBIDDEN_MESSAGE = 'Exclusão de arquivos não é permitida por política de segurança'


class AzureBlobService:
    """Service for interacting with Azure Blob Storage"""

    def __init__(self):
        # Extract account name from connection string or use directly
        self.account_name = self._get_account_name()
        if not self.account_name:
            raise ValueError("Azure Storage account not configured")

        # Use DefaultAzureCredential (Azure CLI login) instead of connection string keys
        logger.info(f"Initializing Blob Storage with DefaultAzureCredential for account: {self.account_name}")
        account_url = f"https://{self.account_name}.blob.core.windows.net"

        self.credential = DefaultAzureCredential()
        self.blob_service_client = BlobServiceClient(
            account_url=account_url,
            credential=self.credential
        )
        self.container_name = config.AZURE_STORAGE_CONTAINER
        self._ensure_container_exists()

    def _get_account_name(self) -> Optional[str]:
        """Extract storage account name from connection string"""
        conn_str = config.AZURE_STORAGE_CONNECTION_STRING
        if not conn_str:
            return None

        match = re.search(r'AccountName=([^;]+)', conn_str)
        if match:
            return match.group(1)
        return None

    def _ensure_container_exists(self):
        """Create container if it doesn't exist"""
        try:
            container_client = self.blob_service_client.get_container_client(
                self.container_name
            )
            if not container_client.exists():
                logger.info(f"Creating container: {self.container_name}")
                container_client.create_container()
        except Exception as e:
            logger.warning(f"Could not verify/create container: {e}")

    def _get_user_delegation_sas(self, blob_name: str, expiry_seconds: int = 3600) -> str:
        """
        Generate a User Delegation SAS token using identity-based auth.
        This doesn't require storage account keys.
        """
        delegation_key_start = datetime.utcnow()
        delegation_key_expiry = delegation_key_start + timedelta(seconds=expiry_seconds)

        user_delegation_key = self.blob_service_client.get_user_delegation_key(
            key_start_time=delegation_key_start,
            key_expiry_time=delegation_key_expiry
        )

        return generate_blob_sas(
            account_name=self.account_name,
            container_name=self.container_name,
            blob_name=blob_name,
            user_delegation_key=user_delegation_key,
            permission=BlobSasPermissions(read=True),
            expiry=delegation_key_expiry
        )

    @staticmethod
    def generate_file_hash(data: bytes) -> str:
        """SHA-256 of the file content, used as the document identity"""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def build_blob_path(user_id: str, original_name: str) -> str:
        """<user>/<epoch ms>-<random>.<ext>"""
        ext = os.path.splitext(original_name)[1].lstrip('.').lower() or 'bin'
        random_part = uuid.uuid4().hex[:8]
        return f"{user_id}/{int(time.time() * 1000)}-{random_part}.{ext}"

    def upload_file(
        self,
        data: Union[bytes, BinaryIO],
        original_name: str,
        content_type: str = 'application/octet-stream',
        user_id: str = 'sistema'
    ) -> Dict[str, Union[str, int]]:
        """
        Upload a document to Azure Blob Storage

        Args:
            data: File content (bytes or a readable stream)
            original_name: Name the user uploaded the file with
            content_type: MIME type of the file
            user_id: Owner; becomes the first path segment

        Returns:
            Dict with path, public_url (SAS), file_hash and size
        """
        if not isinstance(data, (bytes, bytearray)):
            data = data.read()

        blob_name = self.build_blob_path(user_id, original_name)
        logger.info(f"   Creating blob: {blob_name}")

        blob_client = self.blob_service_client.get_blob_client(
            container=self.container_name,
            blob=blob_name
        )

        logger.info(f"   Uploading to container: {self.container_name}")
        blob_client.upload_blob(
            data,
            content_settings=ContentSettings(content_type=content_type),
            overwrite=False
        )

        logger.info(f"   Generating User Delegation SAS token...")
        sas_token = self._get_user_delegation_sas(blob_name)

        logger.info(f"   Upload successful!")
        return {
            'path': blob_name,
            'public_url': f"{blob_client.url}?{sas_token}",
            'file_hash': self.generate_file_hash(bytes(data)),
            'size': len(data),
        }

    def download_file(self, path: str) -> bytes:
        """Read a stored document back into memory"""
        blob_client = self.blob_service_client.get_blob_client(
            container=self.container_name,
            blob=path
        )
        return blob_client.download_blob().readall()

    def get_signed_url(self, path: str, expires_in: int = 3600) -> str:
        blob_client = self.blob_service_client.get_blob_client(
            container=self.container_name,
            blob=path
        )
        sas_token = self._get_user_delegation_sas(path, expires_in)
        return f"{blob_client.url}?{sas_token}"

    def get_file_size(self, path: str) -> int:
        blob_client = self.blob_service_client.get_blob_client(
            container=self.container_name,
            blob=path
        )
        return blob_client.get_blob_properties().size

    def delete_file(self, path: str) -> None:
        """Stored documents are evidence for audits and are never removed"""
        logger.warning(f"Refused delete request for blob: {path}")
        raise PermissionError(DELETE_FORBIDDEN_MESSAGE)


def get_blob_service() -> Optional[AzureBlobService]:
    """Factory function to get blob service instance"""
    try:
        return AzureBlobService()
    except Exception as e:
        logger.warning(f"Could not initialize Azure Blob Service: {e}")
        return None
