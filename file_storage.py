"""
Database-backed blob storage for caller-supplied certificate files.
"""
import logging

from models import db, StoredFile


def store_file(data: bytes, name: str = '', content_type: str = 'application/octet-stream', folder: str = 'general',
               institution_id=None):
    """Stage a file in the current session and return its StoredFile row.

    The caller commits; a failed commit discards the file along with the
    record that references it.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError('store_file expects bytes')
    stored = StoredFile(
        name=name or 'file',
        content_type=content_type or 'application/octet-stream',
        size=len(data),
        folder=folder,
        institution_id=institution_id,
        data=bytes(data),
    )
    db.session.add(stored)
    db.session.flush()
    logging.info('[STORAGE] staged file %s (%d bytes) in %s', stored.file_id, stored.size, folder)
    return stored
