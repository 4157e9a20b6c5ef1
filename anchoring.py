"""
Optional external anchoring of certificate hashes.

An anchor receipt is opaque, unverified metadata. Nothing in the
verification path treats it as a trust root.
"""
import logging
import secrets
import threading
from collections import namedtuple
from datetime import datetime, UTC

AnchorReceipt = namedtuple('AnchorReceipt', ['transaction_id', 'network', 'submitted_at'])


class AnchorError(Exception):
    pass


class AnchorService:
    network = None
    enabled = False

    def submit(self, content_hash: str) -> AnchorReceipt:
        raise NotImplementedError

    def verify(self, receipt: AnchorReceipt, content_hash: str) -> bool:
        raise NotImplementedError


class NullAnchorService(AnchorService):
    """Anchoring switched off."""

    def submit(self, content_hash):
        raise AnchorError('anchoring is not configured')

    def verify(self, receipt, content_hash):
        return False


class LedgerStubAnchorService(AnchorService):
    """In-process stand-in for a ledger: remembers which hash went with which transaction."""
    network = 'ledger-stub'
    enabled = True

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def submit(self, content_hash):
        if not content_hash:
            raise AnchorError('hash required')
        tx_id = '0x' + secrets.token_hex(32)
        with self._lock:
            self._entries[tx_id] = content_hash
        logging.info('[ANCHOR] recorded %s as %s', content_hash[:12], tx_id[:14])
        return AnchorReceipt(tx_id, self.network, datetime.now(UTC))

    def verify(self, receipt, content_hash):
        tx_id = receipt.transaction_id if isinstance(receipt, AnchorReceipt) else receipt
        with self._lock:
            return self._entries.get(tx_id) == content_hash


def build_anchor_service(backend: str) -> AnchorService:
    backend = (backend or 'none').lower()
    if backend == 'ledger-stub':
        return LedgerStubAnchorService()
    if backend != 'none':
        logging.warning('[ANCHOR] Unknown backend %r, anchoring disabled', backend)
    return NullAnchorService()
