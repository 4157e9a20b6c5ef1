"""
Shared helpers for the credential service: hashing, verification tokens,
verification URLs, date parsing and upload checks.
"""
from typing import Optional, Any
import base64
import hashlib
import re
import uuid
from datetime import date, datetime

VERIFICATION_ID_LENGTH = 16
VERIFY_PATH = 'verify'

_DATA_URL_RE = re.compile(r'^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<payload>.*)$', re.DOTALL)


def compute_hash(data) -> str:
    """Return the SHA-256 hex digest of a bytes-like buffer."""
    if isinstance(data, str) or not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f'compute_hash expects bytes, got {type(data).__name__}')
    return hashlib.sha256(data).hexdigest()


def generate_verification_id() -> str:
    """Return a 16-character URL-safe token cut from a random UUID.

    Uniqueness is enforced by the database, not here.
    """
    raw = base64.urlsafe_b64encode(uuid.uuid4().bytes).decode('ascii')
    return raw[:VERIFICATION_ID_LENGTH]


def build_verification_url(base_url: str, verification_id: str) -> str:
    return f"{(base_url or '').rstrip('/')}/{VERIFY_PATH}/{verification_id}"


def safe_parse_date(value, fmt: str = '%Y-%m-%d') -> Optional[date]:
    """Parse date-like values to a date object or return None for invalid/empty inputs."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = str(value).strip()
    if v == '':
        return None
    try:
        return datetime.strptime(v, fmt).date()
    except ValueError:
        pass
    # ISO timestamps as sent by browsers ("2024-01-01T00:00:00.000Z")
    try:
        return datetime.fromisoformat(v.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def display_date(value: date) -> str:
    return value.strftime('%B %d, %Y')


def file_extension(filename: str) -> str:
    if not isinstance(filename, str) or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def allowed_file(filename: str, allowed) -> bool:
    """Return True if the filename extension is in `allowed`."""
    return file_extension(filename) in set(allowed)


def to_data_url(data: bytes, mime: str) -> str:
    encoded = base64.b64encode(data).decode('utf-8')
    return f"data:{mime};base64,{encoded}"


def decode_data_url(url: str) -> bytes:
    """Return the payload of a data: URL. Raises ValueError when malformed."""
    m = _DATA_URL_RE.match(url or '')
    if not m:
        raise ValueError('not a data URL')
    payload = m.group('payload')
    if m.group('b64'):
        return base64.b64decode(payload, validate=True)
    from urllib.parse import unquote_to_bytes
    return unquote_to_bytes(payload)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
