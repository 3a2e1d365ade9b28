"""
Compact HMAC-SHA256 signed tokens.

Tokens have the usual three dot-separated base64url parts (header, payload, signature). The
payload carries ``sub`` (the user's email), ``jti`` (a random token id), ``type``
(``access`` or ``refresh``), ``iat`` and ``exp``. Access and refresh tokens are signed with
different secrets.
"""

import base64
import enum
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Dict, Optional

HEADER: Dict[str, str] = {'alg': 'HS256', 'typ': 'JWT'}


class TokenType(enum.StrEnum):
    """Token kinds. Each kind is signed with its own secret."""
    Access = 'access'
    Refresh = 'refresh'


class TokenInvalidError(Exception):
    """Raised when a token is malformed, has a bad signature, the wrong type or has expired."""
    pass


def b64url_encode(data: bytes) -> str:
    """Base64url-encode ``data`` without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64url_decode(data: str) -> bytes:
    """Decode unpadded base64url text.

    Raises:
        TokenInvalidError: If ``data`` is not valid base64url.
    """
    try:
        return base64.urlsafe_b64decode(data + '=' * (-len(data) % 4))
    except (ValueError, TypeError) as ex:
        raise TokenInvalidError('Invalid base64url segment.') from ex


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode('utf-8'), signing_input.encode('ascii'), hashlib.sha256).digest()
    return b64url_encode(digest)


def _encode_segment(data: Dict[str, Any]) -> str:
    return b64url_encode(json.dumps(data, separators=(',', ':')).encode('utf-8'))


def encode(payload: Dict[str, Any], secret: str) -> str:
    """Sign ``payload`` and return the compact token string.

    Args:
        payload: JSON-serializable claims.
        secret: The HMAC secret.

    Returns:
        str: ``header.payload.signature``
    """
    signing_input = f'{_encode_segment(HEADER)}.{_encode_segment(payload)}'
    return f'{signing_input}.{_sign(signing_input, secret)}'


def issue(sub: str, token_type: TokenType, secret: str, ttl: int, now: Optional[float] = None) -> Dict[str, Any]:
    """Create a new signed token for ``sub``.

    Args:
        sub: The subject, i.e. the user's email.
        token_type: Access or refresh.
        secret: The secret for this token type.
        ttl: Lifetime in seconds.
        now: Current epoch time. Defaults to ``time.time()``.

    Returns:
        dict: ``token`` (the encoded string) and ``payload`` (the signed claims).
    """
    iat = int(time.time() if now is None else now)
    payload = {
        'sub': sub,
        'jti': str(uuid.uuid4()),
        'type': str(token_type),
        'iat': iat,
        'exp': iat + int(ttl),
    }
    return {'token': encode(payload, secret), 'payload': payload}


def peek(token: str) -> Dict[str, Any]:
    """Decode the payload of ``token`` without checking its signature or expiry.

    Raises:
        TokenInvalidError: If the token is not three parts or the payload is not a JSON object.
    """
    if not isinstance(token, str):
        raise TokenInvalidError('Token must be a string.')
    parts = token.split('.')
    if len(parts) != 3:
        raise TokenInvalidError('Token must have three parts.')
    try:
        payload = json.loads(b64url_decode(parts[1]))
    except (UnicodeDecodeError, json.JSONDecodeError) as ex:
        raise TokenInvalidError('Token payload is not valid JSON.') from ex
    if not isinstance(payload, dict):
        raise TokenInvalidError('Token payload must be an object.')
    return payload


def decode(token: str, secret: str, expected_type: TokenType, now: Optional[float] = None) -> Dict[str, Any]:
    """Verify ``token`` and return its payload.

    Checks, in order: the token shape, the ``type`` claim, the signature (constant-time
    compare) and expiry.

    Args:
        token: The compact token string.
        secret: The secret for ``expected_type``.
        expected_type: The kind of token the caller accepts.
        now: Current epoch time. Defaults to ``time.time()``.

    Returns:
        dict: The verified payload.

    Raises:
        TokenInvalidError: If any check fails.
    """
    payload = peek(token)

    if payload.get('type') != str(expected_type):
        raise TokenInvalidError(f'Expected a {expected_type} token, got "{payload.get("type")}".')

    header_b64, payload_b64, signature = token.split('.')
    expected = _sign(f'{header_b64}.{payload_b64}', secret)
    if not hmac.compare_digest(expected, signature):
        raise TokenInvalidError('Signature mismatch.')

    exp = payload.get('exp')
    if not isinstance(exp, (int, float)) or exp <= (time.time() if now is None else now):
        raise TokenInvalidError('Token expired.')

    if not payload.get('sub') or not payload.get('jti'):
        raise TokenInvalidError('Token is missing required claims.')

    return payload
