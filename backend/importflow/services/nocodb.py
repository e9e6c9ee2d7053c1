"""
NocoDB Service
REST client for the NocoDB v2 records API (system of record for uploads,
extracted documents, import processes and audit logs)
"""
import logging
import threading
import requests
from typing import Any, Dict, List, Optional, Union
from importflow.config import config

logger = logging.getLogger('importflow.nocodb')

RecordId = Union[int, str]

# Characters that end a term or condition in the where syntax
_WHERE_SPECIAL = set('(),~"')


def where_eq(field: str, value: Any) -> str:
    """
    Build a "(field,eq,value)" condition

    Values holding filter syntax (e.g. "Invoice (1).pdf") are sent as a
    double-quoted string with inner quotes backslash-escaped.
    """
    text = str(value)
    if any(char in _WHERE_SPECIAL for char in text):
        text = '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'
    return f"({field},eq,{text})"


class NocoDBError(Exception):
    """Raised when NocoDB answers with a non-2xx status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NocoDBService:
    """Thin wrapper over /api/v2/tables/{tableId}/records"""

    def __init__(self, base_url: Optional[str] = None, api_token: Optional[str] = None,
                 timeout: Optional[int] = None):
        base_url = base_url or config.NOCODB_API_URL
        api_token = api_token or config.NOCODB_API_TOKEN
        if not base_url or not api_token:
            raise ValueError(
                "NocoDB configuration missing. Please check NOCODB_API_URL and NOCODB_API_TOKEN"
            )

        base_url = base_url.rstrip('/')
        if not base_url.endswith('/api/v2'):
            base_url = f"{base_url}/api/v2"

        self.base_url = base_url
        self.timeout = timeout or config.NOCODB_TIMEOUT
        self.headers = {
            'xc-token': api_token,
            'Content-Type': 'application/json',
        }

    def _request(self, method: str, path: str, params: Optional[Dict] = None,
                 json_body: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        response = requests.request(
            method,
            url,
            headers=self.headers,
            params=params,
            json=json_body,
            timeout=self.timeout
        )

        if response.status_code >= 400:
            message = f"NocoDB request failed with status {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get('msg') or body.get('message') or message
            except ValueError:
                if response.text:
                    message = response.text
            logger.error(f"{method} {path} -> {response.status_code}: {message}")
            raise NocoDBError(message, response.status_code)

        if not response.content:
            return None
        return response.json()

    def create(self, table_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record; returns the new record (at least its Id)"""
        return self._request('POST', f"/tables/{table_id}/records", json_body=data)

    def find(
        self,
        table_id: str,
        where: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
        sort: Optional[Union[str, List[str]]] = None,
        fields: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        List records

        Args:
            where: NocoDB filter, e.g. "(hashArquivo,eq,abc)~and(status,eq,active)"
            sort: "-CreatedAt" or a list of sort keys

        Returns:
            Dict with 'list' and 'pageInfo'
        """
        params: Dict[str, Any] = {'limit': limit, 'offset': offset}
        if where:
            params['where'] = where
        if sort:
            params['sort'] = ','.join(sort) if isinstance(sort, list) else sort
        if fields:
            params['fields'] = ','.join(fields)

        result = self._request('GET', f"/tables/{table_id}/records", params=params) or {}
        result.setdefault('list', [])
        result.setdefault('pageInfo', {})
        return result

    def find_one(self, table_id: str, record_id: RecordId) -> Optional[Dict[str, Any]]:
        """Read one record by Id; None when it does not exist"""
        try:
            return self._request('GET', f"/tables/{table_id}/records/{record_id}")
        except NocoDBError as e:
            if e.status_code == 404:
                return None
            raise

    def find_by_field(self, table_id: str, field: str, value: Any) -> Optional[Dict[str, Any]]:
        result = self.find(table_id, where=where_eq(field, value), limit=1)
        return result['list'][0] if result['list'] else None

    def update(self, table_id: str, record_id: RecordId, data: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(data)
        body['Id'] = record_id
        return self._request('PATCH', f"/tables/{table_id}/records", json_body=body)

    def delete(self, table_id: str, record_id: RecordId) -> None:
        self._request('DELETE', f"/tables/{table_id}/records", json_body={'Id': record_id})

    def bulk_create(self, table_id: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not records:
            return []
        return self._request('POST', f"/tables/{table_id}/records", json_body=records) or []

    def bulk_update(self, table_id: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Each record must carry its Id"""
        if not records:
            return []
        return self._request('PATCH', f"/tables/{table_id}/records", json_body=records) or []

    def bulk_delete(self, table_id: str, record_ids: List[RecordId]) -> List[Dict[str, Any]]:
        if not record_ids:
            return []
        body = [{'Id': record_id} for record_id in record_ids]
        return self._request('DELETE', f"/tables/{table_id}/records", json_body=body) or []

    def count(self, table_id: str, where: Optional[str] = None) -> int:
        params = {'where': where} if where else None
        result = self._request('GET', f"/tables/{table_id}/records/count", params=params) or {}
        return int(result.get('count', 0))

    def get_linked_records(self, table_id: str, link_field_id: str, record_id: RecordId,
                           limit: int = 25, offset: int = 0) -> Dict[str, Any]:
        return self._request(
            'GET',
            f"/tables/{table_id}/links/{link_field_id}/records/{record_id}",
            params={'limit': limit, 'offset': offset}
        ) or {'list': []}

    def health_check(self) -> Dict[str, Any]:
        """Probe the API; never raises"""
        try:
            requests.get(
                f"{self.base_url.rsplit('/api/v2', 1)[0]}/api/v1/health",
                headers=self.headers,
                timeout=self.timeout
            ).raise_for_status()
            return {'healthy': True, 'message': 'NocoDB reachable'}
        except Exception as e:
            logger.warning(f"NocoDB health check failed: {e}")
            return {'healthy': False, 'message': str(e)}


_instance: Optional[NocoDBService] = None
_instance_lock = threading.Lock()


def get_nocodb_service() -> NocoDBService:
    """
    Lazily create the shared NocoDB client

    Raises:
        ValueError: NocoDB is not configured
    """
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = NocoDBService()
            logger.info(f"NocoDB client ready: {_instance.base_url}")
        return _instance


def reset_nocodb_service() -> None:
    global _instance
    with _instance_lock:
        _instance = None


def is_nocodb_configured() -> bool:
    return config.is_nocodb_configured()


def get_nocodb_status() -> Dict[str, bool]:
    return {
        'configured': config.is_nocodb_configured(),
        'hasUrl': bool(config.NOCODB_API_URL),
        'hasToken': bool(config.NOCODB_API_TOKEN),
    }


def is_missing_table_error(error: Exception) -> bool:
    """NocoDB reports unknown table ids with 'not found' / 'does not exist'"""
    message = str(error).lower()
    return 'not found' in message or 'does not exist' in message
