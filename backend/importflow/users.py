"""
Request user identity
Authentication happens in front of this API; the caller is forwarded in headers
"""
from typing import Dict
from flask import request

DEFAULT_USER_ID = 'sistema'


def get_current_user() -> Dict[str, str]:
    """{'id': ..., 'email': ...} from X-User-Id / X-User-Email"""
    return {
        'id': request.headers.get('X-User-Id') or DEFAULT_USER_ID,
        'email': request.headers.get('X-User-Email') or '',
    }
