"""
Password hashing and auth tokens
"""
import hashlib
import hmac
import os
import binascii
from typing import Any, Dict, Optional

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

import config

TOKEN_SALT = "field-crm-auth"

def hash_password(password: str, salt: str = None) -> str:
    """
    Hash a password with PBKDF2-HMAC-SHA256

    Args:
        password: plain text password
        salt: optional salt, generated when omitted

    Returns:
        string of the form algorithm$iterations$salt$hash
    """
    algorithm = 'pbkdf2_sha256'
    iterations = 260000

    if salt is None:
        salt = hashlib.sha256(os.urandom(60)).hexdigest().encode('ascii')
    else:
        salt = salt.encode('ascii')

    pwdhash = hashlib.pbkdf2_hmac(
        'sha256',
        password.encode('utf-8'),
        salt,
        iterations
    )
    pwdhash = binascii.hexlify(pwdhash).decode('ascii')

    return f"{algorithm}${iterations}${salt.decode('ascii')}${pwdhash}"

def verify_password(stored_password: str, provided_password: str) -> bool:
    """
    Check a plain password against a stored hash

    Returns:
        True when the password matches
    """
    try:
        algorithm, iterations, salt, pwdhash = stored_password.split('$', 3)
        new_hash = hash_password(provided_password, salt).split('$')[-1]
        return hmac.compare_digest(new_hash, pwdhash)
    except (ValueError, IndexError, AttributeError):
        return False

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.SECRET_KEY, salt=TOKEN_SALT)

def sign_token(identity: Dict[str, Any]) -> str:
    """Sign an identity {id, username, role} into a cookie/bearer token"""
    return _serializer().dumps({
        "id": str(identity["id"]),
        "username": identity.get("username", ""),
        "role": identity["role"],
    })

def verify_token(token: str, max_age: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """
    Decode a token produced by sign_token

    Returns:
        the identity dict, or None when the token is invalid or expired
    """
    if not token:
        return None
    if max_age is None:
        max_age = config.TOKEN_MAX_AGE_DAYS * 24 * 3600
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        return None
    except BadSignature:
        return None
    if not isinstance(payload, dict) or "role" not in payload or "id" not in payload:
        return None
    return payload
