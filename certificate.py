"""
Certificate lifecycle: issuance, updates, bulk issuing and verification lookups.

Callers are trusted identities (see Caller); every mutating operation
checks the caller's rights over the owning institution itself before any
rendering or database write happens.
"""
import json
import logging
import re
from collections import namedtuple
from datetime import date, datetime, UTC

from flask import current_app
from PIL import ImageColor
from sqlalchemy import and_, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from anchoring import NullAnchorService
from certificate_image import DEFAULT_DESIGN, FONT_FAMILY_RE, generate_certificate_image
from errors import AuthorizationError, NotFoundError, PersistenceError, RenderingError, ValidationError
from file_storage import store_file
from generate_certificate import generate_certificate_pdf
from models import (db, ActivityLog, Certificate, CertificateStatus, Institution, InstitutionUser,
                    LogAction, LogCategory, LogStatus, StoredFile, UserRole)
from notifications import send_issuance_email
from utils import (allowed_file, build_verification_url, compute_hash, file_extension, format_date,
                   generate_verification_id, parse_bool, safe_parse_date)

BULK_LIMIT = 100
TEMPLATE_FOLDER = 'certificate-templates'
MAX_FIELD_LENGTH = 255
MIN_FONT_SIZE = 8
MAX_FONT_SIZE = 120

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_TEMPLATE_KEY_RE = re.compile(r'^[A-Za-z0-9_-]{1,64}$')

Caller = namedtuple('Caller', ['user_id', 'role', 'institution_id', 'display_name', 'email'],
                    defaults=(None, None, None))

Upload = namedtuple('Upload', ['data', 'filename', 'content_type'])
Artifact = namedtuple('Artifact', ['kind', 'content_type', 'data', 'content_hash'])

IMMUTABLE_FIELDS = ('id', 'verification_id', 'content_hash', 'institution_id', 'artifact_kind',
                    'artifact_content_type', 'artifact_data', 'artifact_file_id', 'anchor_receipt',
                    'anchor_network', 'issued_by_user_id', 'design_data')

_STATUS_ACTIONS = {
    CertificateStatus.ISSUED: LogAction.ISSUE,
    CertificateStatus.REVOKED: LogAction.REVOKE,
}


def caller_from_user(user):
    """Build a Caller from an authenticated User row."""
    return Caller(
        user_id=user.user_id,
        role=user.role,
        institution_id=user.primary_institution_id,
        display_name=user.name,
        email=user.email,
    )


# -- collaborators initialised in create_app ------------------------------

def _sink(sink=None):
    return sink or current_app.extensions['activity_log']


def _anchor_service(anchor=None):
    return anchor or current_app.extensions.get('anchor_service') or NullAnchorService()


def _fonts(fonts=None):
    return fonts or current_app.extensions.get('certificate_fonts')


# -- authorization ---------------------------------------------------------

def can_manage_institution(caller, institution_id) -> bool:
    if caller is None or institution_id is None:
        return False
    if caller.role == UserRole.ADMIN:
        return True
    if caller.role != UserRole.INSTITUTION:
        return False
    membership = InstitutionUser.query.filter_by(user_id=caller.user_id, institution_id=institution_id).first()
    return membership is not None


def _managed_institution_ids(caller):
    return [m.institution_id for m in InstitutionUser.query.filter_by(user_id=caller.user_id).all()]


def _load_for_caller(caller, certificate_id):
    """Fetch a certificate the caller may manage.

    Non-admins get the same AuthorizationError for missing and foreign
    certificates so existence is not revealed.
    """
    cert = find_by_internal_id(certificate_id)
    if cert is not None and can_manage_institution(caller, cert.institution_id):
        return cert
    if cert is None and caller is not None and caller.role == UserRole.ADMIN:
        raise NotFoundError()
    raise AuthorizationError()


# -- validation ------------------------------------------------------------

def _clean_text(data, key, errors, required=False, label=None, max_length=MAX_FIELD_LENGTH):
    value = data.get(key)
    if value is None:
        if required:
            errors[key] = f"{label or key.replace('_', ' ').capitalize()} is required"
        return None
    value = str(value).strip()
    if not value:
        if required:
            errors[key] = f"{label or key.replace('_', ' ').capitalize()} is required"
        return None
    if max_length and len(value) > max_length:
        errors[key] = f"{label or key.replace('_', ' ').capitalize()} must be at most {max_length} characters"
    return value


def _clean_date(data, key, errors, required=False, label=None):
    raw = data.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors[key] = f'{label} is required'
        return None
    parsed = safe_parse_date(raw)
    if parsed is None:
        errors[key] = f'{label} must be a valid date (YYYY-MM-DD)'
    return parsed


def _clean_email(data, key, errors, required=False):
    value = _clean_text(data, key, errors, required=required, label='Recipient email', max_length=120)
    if value and not _EMAIL_RE.match(value):
        errors[key] = 'Recipient email is not a valid email address'
    return value.lower() if value else value


def _clean_design(raw, errors):
    if raw is None or raw == '':
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            errors['design'] = 'Design data must be valid JSON'
            return None
    if not isinstance(raw, dict):
        errors['design'] = 'Design data must be an object'
        return None
    design = dict(DEFAULT_DESIGN)
    for key in DEFAULT_DESIGN:
        if raw.get(key) is not None:
            design[key] = raw[key]
    for key in ('background_color', 'text_color', 'accent_color', 'border_color'):
        try:
            ImageColor.getrgb(str(design[key]))
        except ValueError:
            errors[f'design.{key}'] = f'{design[key]!r} is not a valid colour'
    try:
        design['font_size'] = int(design['font_size'])
        if not MIN_FONT_SIZE <= design['font_size'] <= MAX_FONT_SIZE:
            raise ValueError
    except (TypeError, ValueError):
        errors['design.font_size'] = f'Font size must be a whole number between {MIN_FONT_SIZE} and {MAX_FONT_SIZE}'
    design['show_border'] = parse_bool(design['show_border'])
    design['show_logo'] = parse_bool(design['show_logo'])
    design['font_family'] = str(design['font_family'] or DEFAULT_DESIGN['font_family']).strip()
    if not FONT_FAMILY_RE.match(design['font_family']):
        errors['design.font_family'] = 'Font family may only contain letters, digits, spaces, _ and -'
    if design.get('logo_url') is not None and not isinstance(design['logo_url'], str):
        errors['design.logo_url'] = 'Logo URL must be a string'
    return design


def _check_dates(issue_date, expiry_date, errors):
    if issue_date and expiry_date and expiry_date < issue_date:
        errors['expiry_date'] = 'Expiry date cannot be before the issue date'


def _check_upload(upload, config, errors):
    if upload is None:
        return
    if not upload.data:
        errors['file'] = 'Uploaded file is empty'
        return
    if len(upload.data) > config.get('MAX_UPLOAD_BYTES', 10 * 1024 * 1024):
        errors['file'] = 'File size exceeds the upload limit'
    allowed = config.get('ALLOWED_UPLOAD_EXTENSIONS', ())
    if not allowed_file(upload.filename, allowed):
        errors['file'] = f"Invalid file type. Allowed: {', '.join(e.upper() for e in allowed)}"


def validate_certificate_input(data, caller=None, upload=None, config=None):
    """Return cleaned creation fields or raise ValidationError with every problem found."""
    config = config or {}
    errors = {}
    cleaned = {
        'title': _clean_text(data, 'title', errors, required=True),
        'recipient_name': _clean_text(data, 'recipient_name', errors, required=True, label='Recipient name'),
        'recipient_email': _clean_email(data, 'recipient_email', errors, required=True),
        'description': _clean_text(data, 'description', errors, max_length=5000),
        'certificate_type': _clean_text(data, 'certificate_type', errors, max_length=100),
        'issue_date': _clean_date(data, 'issue_date', errors, required=True, label='Issue date'),
        'expiry_date': _clean_date(data, 'expiry_date', errors, label='Expiry date'),
        'design': _clean_design(data.get('design'), errors),
        'anchor': parse_bool(data.get('anchor')),
    }
    _check_dates(cleaned['issue_date'], cleaned['expiry_date'], errors)

    status = (data.get('status') or CertificateStatus.ISSUED)
    status = str(status).strip().upper()
    if status not in (CertificateStatus.PENDING, CertificateStatus.ISSUED):
        errors['status'] = 'New certificates must be PENDING or ISSUED'
    cleaned['status'] = status

    institution_id = data.get('institution_id')
    if institution_id in (None, '') and caller is not None:
        institution_id = caller.institution_id
    try:
        cleaned['institution_id'] = int(institution_id)
    except (TypeError, ValueError):
        errors['institution_id'] = 'Institution is required'
        cleaned['institution_id'] = None

    if upload is not None and cleaned['design'] is not None:
        errors['design'] = 'Provide either a file or a design, not both'
    _check_upload(upload, config, errors)

    if errors:
        raise ValidationError(errors)
    return cleaned


# -- rendering ------------------------------------------------------------

def _render_artifact(cleaned, institution, verification_id, verification_url, fonts, config):
    """Render the PDF (default) or designed PNG for a new certificate."""
    design = cleaned['design']
    try:
        if design is not None or config.get('ARTIFACT_FORMAT') == 'png':
            options = dict(design or DEFAULT_DESIGN)
            if options.get('show_logo') and not options.get('logo_url'):
                options['logo_url'] = institution.logo
            options.update({
                'title': cleaned['title'],
                'recipient_name': cleaned['recipient_name'],
                'recipient_email': cleaned['recipient_email'],
                'description': cleaned['description'],
                'issued_date': cleaned['issue_date'],
                'certificate_id': verification_id,
            })
            png_bytes, _data_url = generate_certificate_image(
                options, fonts=fonts, logo_timeout=config.get('LOGO_FETCH_TIMEOUT', 5.0))
            return Artifact('png', 'image/png', png_bytes, compute_hash(png_bytes))
        pdf_bytes, pdf_hash = generate_certificate_pdf(
            title=cleaned['title'],
            recipient_name=cleaned['recipient_name'],
            issue_date=cleaned['issue_date'],
            expiry_date=cleaned['expiry_date'],
            institution_name=institution.name,
            certificate_id=verification_id,
            verification_url=verification_url,
            fonts=current_app.extensions.get('certificate_pdf_fonts'),
        )
        return Artifact('pdf', 'application/pdf', pdf_bytes, pdf_hash)
    except Exception as e:
        logging.exception('[RENDER] Failed to render certificate %s', verification_id)
        raise RenderingError(str(e)) from e


def _is_verification_id_collision(exc) -> bool:
    return 'verification_id' in str(getattr(exc, 'orig', exc))


# -- design templates -------------------------------------------------------

def _require_institution(caller, institution_id):
    if institution_id in (None, ''):
        institution_id = caller.institution_id if caller else None
    if institution_id is None:
        if caller is not None and caller.role == UserRole.ADMIN:
            raise ValidationError({'institution_id': 'Institution is required'})
        raise AuthorizationError()
    try:
        institution_id = int(institution_id)
    except (TypeError, ValueError):
        raise ValidationError({'institution_id': 'Institution must be a number'})
    if not can_manage_institution(caller, institution_id):
        raise AuthorizationError()
    return institution_id


def _template_view(stored):
    try:
        payload = json.loads(stored.data.decode('utf-8'))
    except ValueError:
        logging.warning('[TEMPLATE] stored template %s is not valid JSON, skipping', stored.file_id)
        return None
    updated = stored.updated_at or stored.uploaded_at
    return {
        'template_id': stored.file_id,
        'key': payload.get('id'),
        'name': payload.get('name'),
        'design': payload.get('design'),
        'institution_id': stored.institution_id,
        'updated_at': updated.isoformat() if updated else None,
    }


def _template_query(institution_id):
    return StoredFile.query.filter_by(folder=TEMPLATE_FOLDER, institution_id=institution_id)


def save_template(caller, institution_id, template, sink=None):
    """Create or replace a named design template owned by an institution.

    Templates are keyed by `id` (derived from the name when absent); saving
    the same key again replaces the stored design.
    """
    institution_id = _require_institution(caller, institution_id)
    if not isinstance(template, dict) or not template:
        raise ValidationError({'template': 'Template data is required'})
    errors = {}
    name = _clean_text(template, 'name', errors, required=True, label='Template name', max_length=100)
    key = str(template.get('id') or '').strip() or re.sub(r'[^A-Za-z0-9_-]+', '-', name or '').strip('-').lower()
    if name and not _TEMPLATE_KEY_RE.match(key):
        errors['id'] = 'Template id may only contain letters, digits, _ and -'
    design = _clean_design(template.get('design'), errors)
    if design is None and 'design' not in errors:
        errors['design'] = 'Template design is required'
    if errors:
        raise ValidationError(errors)

    data = json.dumps({'id': key, 'name': name, 'design': design}, sort_keys=True).encode('utf-8')
    file_name = f'certificate-template-{key}'
    try:
        stored = _template_query(institution_id).filter_by(name=file_name).first()
        if stored is not None:
            stored.data = data
            stored.size = len(data)
            stored.updated_at = datetime.now(UTC)
        else:
            stored = store_file(data, file_name, 'application/json', folder=TEMPLATE_FOLDER,
                                institution_id=institution_id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.exception('[TEMPLATE] Failed to save template %s', key)
        raise PersistenceError(str(e)) from e

    logging.info('[TEMPLATE] user %s saved template %s for institution %s', caller.user_id, key, institution_id)
    _sink(sink).emit(
        LogAction.CREATE, LogCategory.CERTIFICATE,
        details=f'Saved certificate template: {name}',
        metadata={'template_id': stored.file_id, 'key': key},
        user_id=caller.user_id, institution_id=institution_id,
    )
    return _template_view(stored)


def list_templates(caller, institution_id=None):
    institution_id = _require_institution(caller, institution_id)
    views = [_template_view(s) for s in _template_query(institution_id).order_by(StoredFile.name).all()]
    return [v for v in views if v is not None]


def _design_from_template(institution_id, template_id, overrides):
    """Template design for `institution_id` with any caller-supplied design keys laid over it."""
    stored = _template_query(institution_id).filter_by(file_id=str(template_id)).first()
    template = _template_view(stored) if stored is not None else None
    if template is None:
        raise NotFoundError('Template not found')
    raw = dict(template['design'] or {})
    if isinstance(overrides, str):
        overrides = json.loads(overrides) if overrides.strip() else None
    if isinstance(overrides, dict):
        raw.update({k: v for k, v in overrides.items() if v is not None})
    errors = {}
    design = _clean_design(raw, errors)
    if errors:
        raise ValidationError(errors)
    return design


# -- create ---------------------------------------------------------------

def create_certificate(caller, data, upload=None, fonts=None, anchor=None, sink=None):
    """Issue a certificate and return the persisted Certificate.

    Renders an artifact unless `upload` is given, hashes it, persists the
    record (regenerating the verification token once on a collision) and
    then emits an activity entry. Anchoring and e-mail are best effort.
    """
    config = current_app.config
    cleaned = validate_certificate_input(data, caller=caller, upload=upload, config=config)

    institution_id = cleaned['institution_id']
    if not can_manage_institution(caller, institution_id):
        logging.info('[CERTIFICATE] user %s denied issuing for institution %s',
                     getattr(caller, 'user_id', None), institution_id)
        raise AuthorizationError()
    institution = db.session.get(Institution, institution_id)
    if institution is None:
        raise NotFoundError('Institution not found')
    if data.get('template_id'):
        if upload is not None:
            raise ValidationError({'template_id': 'Provide either a file or a template, not both'})
        cleaned['design'] = _design_from_template(institution_id, data['template_id'], data.get('design'))

    fonts = _fonts(fonts)
    cert = None
    for attempt in range(2):
        verification_id = generate_verification_id()
        verification_url = build_verification_url(config['PUBLIC_BASE_URL'], verification_id)

        if upload is not None:
            artifact = Artifact('upload', upload.content_type or 'application/octet-stream',
                                upload.data, compute_hash(upload.data))
        else:
            artifact = _render_artifact(cleaned, institution, verification_id, verification_url, fonts, config)

        cert = Certificate(
            verification_id=verification_id,
            title=cleaned['title'],
            description=cleaned['description'],
            recipient_name=cleaned['recipient_name'],
            recipient_email=cleaned['recipient_email'],
            certificate_type=cleaned['certificate_type'],
            institution_id=institution_id,
            status=cleaned['status'],
            issue_date=cleaned['issue_date'],
            expiry_date=cleaned['expiry_date'],
            content_hash=artifact.content_hash,
            artifact_kind=artifact.kind,
            artifact_content_type=artifact.content_type,
            design_data=json.dumps(cleaned['design']) if cleaned['design'] is not None else None,
            issued_by_user_id=caller.user_id,
        )
        try:
            if artifact.kind == 'upload':
                stored = store_file(upload.data, upload.filename, artifact.content_type, folder='certificates')
                cert.artifact_file_id = stored.file_id
            else:
                cert.artifact_data = artifact.data
            db.session.add(cert)
            db.session.commit()
            break
        except IntegrityError as e:
            db.session.rollback()
            if attempt == 0 and _is_verification_id_collision(e):
                logging.warning('[CERTIFICATE] verification id collision on %s, retrying', verification_id)
                continue
            logging.exception('[CERTIFICATE] Failed to persist certificate')
            raise PersistenceError(str(e)) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            logging.exception('[CERTIFICATE] Failed to persist certificate')
            raise PersistenceError(str(e)) from e

    logging.info('[CERTIFICATE] user %s issued %s (%s) for institution %s',
                 caller.user_id, cert.id, cert.verification_id, institution_id)

    if cleaned['anchor']:
        _anchor_certificate(cert, caller, anchor, sink)

    _sink(sink).emit(
        LogAction.CREATE, LogCategory.CERTIFICATE,
        details=f'Created certificate: {cert.title} for {cert.recipient_name}',
        metadata={'artifact': cert.artifact_kind, 'status': cert.status, 'anchored': bool(cert.anchor_receipt)},
        user_id=caller.user_id, institution_id=institution_id, certificate_id=cert.id,
    )

    if cert.status == CertificateStatus.ISSUED:
        _notify_issued(cert)
    return cert


def _notify_issued(cert):
    institution = cert.institution
    send_issuance_email(cert, institution.name if institution else '',
                        build_verification_url(current_app.config['PUBLIC_BASE_URL'], cert.verification_id))


def _anchor_certificate(cert, caller, anchor=None, sink=None):
    service = _anchor_service(anchor)
    try:
        receipt = service.submit(cert.content_hash)
        cert.anchor_receipt = receipt.transaction_id
        cert.anchor_network = receipt.network
        db.session.commit()
        status, details = LogStatus.SUCCESS, f'Anchored hash as {receipt.transaction_id}'
    except Exception as e:
        db.session.rollback()
        logging.warning('[ANCHOR] Anchoring failed for %s: %s', cert.id, e)
        status, details = LogStatus.FAILURE, f'Anchoring failed: {e}'
    _sink(sink).emit(
        LogAction.ANCHOR, LogCategory.ANCHOR, status=status, details=details,
        user_id=caller.user_id, institution_id=cert.institution_id, certificate_id=cert.id,
    )


# -- update ---------------------------------------------------------------

def update_certificate(caller, certificate_id, changes, sink=None):
    """Apply metadata/status changes. Identity, hash and artifact never change."""
    cert = _load_for_caller(caller, certificate_id)
    errors = {}

    for key in IMMUTABLE_FIELDS:
        if key not in changes or changes[key] in (None, ''):
            continue
        current = getattr(cert, key)
        if str(changes[key]) != str(current):
            if key == 'institution_id':
                errors[key] = 'Certificates cannot be moved to another institution'
            else:
                errors[key] = f'{key} cannot be changed after issuance'

    updates = {}
    if 'title' in changes:
        updates['title'] = _clean_text(changes, 'title', errors, required=True)
    if 'recipient_name' in changes:
        updates['recipient_name'] = _clean_text(changes, 'recipient_name', errors, required=True,
                                                label='Recipient name')
    if 'recipient_email' in changes:
        updates['recipient_email'] = _clean_email(changes, 'recipient_email', errors, required=True)
    if 'description' in changes:
        updates['description'] = _clean_text(changes, 'description', errors, max_length=5000)
    if 'certificate_type' in changes:
        updates['certificate_type'] = _clean_text(changes, 'certificate_type', errors, max_length=100)
    if 'issue_date' in changes:
        updates['issue_date'] = _clean_date(changes, 'issue_date', errors, required=True, label='Issue date')
    if 'expiry_date' in changes:
        updates['expiry_date'] = _clean_date(changes, 'expiry_date', errors, label='Expiry date')

    _check_dates(updates.get('issue_date', cert.issue_date), updates.get('expiry_date', cert.expiry_date), errors)

    new_status = None
    if changes.get('status'):
        new_status = str(changes['status']).strip().upper()
        if new_status == CertificateStatus.EXPIRED:
            errors['status'] = 'Expiry follows from the expiry date and cannot be set directly'
        elif new_status not in CertificateStatus.ALL:
            errors['status'] = f'Unknown status {new_status}'
        elif CertificateStatus.RANK[new_status] < CertificateStatus.RANK[cert.status]:
            errors['status'] = f'Status cannot move from {cert.status} to {new_status}'
        elif new_status != cert.status:
            updates['status'] = new_status

    if errors:
        raise ValidationError(errors)

    changed = [k for k, v in updates.items() if getattr(cert, k) != v]
    for key in changed:
        setattr(cert, key, updates[key])
    cert.updated_at = datetime.now(UTC)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.exception('[CERTIFICATE] Failed to update %s', certificate_id)
        raise PersistenceError(str(e)) from e

    action = _STATUS_ACTIONS.get(updates.get('status'), LogAction.UPDATE)
    _sink(sink).emit(
        action, LogCategory.CERTIFICATE,
        details=f'Updated certificate: {cert.title}',
        metadata={'changed': changed},
        user_id=caller.user_id, institution_id=cert.institution_id, certificate_id=cert.id,
    )
    if updates.get('status') == CertificateStatus.ISSUED:
        _notify_issued(cert)
    return cert


def bulk_issue(caller, certificate_ids=None, institution_id=None, sink=None):
    """Move PENDING certificates to ISSUED. Already-issued rows are skipped.

    Scope is either an explicit id list (at most BULK_LIMIT) or a whole
    institution. Returns requested/issued/skipped counts.
    """
    if caller is None or caller.role not in (UserRole.ADMIN, UserRole.INSTITUTION):
        raise AuthorizationError()

    if certificate_ids is not None:
        if not isinstance(certificate_ids, list) or not certificate_ids:
            raise ValidationError({'ids': 'No certificates selected'})
        if len(certificate_ids) > BULK_LIMIT:
            raise ValidationError({'ids': f'At most {BULK_LIMIT} certificates per request'})
        if not all(isinstance(cid, str) and cid for cid in certificate_ids):
            raise ValidationError({'ids': 'Invalid certificate ids'})
        ids = list(dict.fromkeys(certificate_ids))
        conditions = [Certificate.status == CertificateStatus.PENDING, Certificate.id.in_(ids)]
        if caller.role != UserRole.ADMIN:
            conditions.append(Certificate.institution_id.in_(_managed_institution_ids(caller)))
        requested = len(ids)
    elif institution_id is not None:
        if not can_manage_institution(caller, institution_id):
            raise AuthorizationError()
        conditions = [Certificate.status == CertificateStatus.PENDING, Certificate.institution_id == institution_id]
        requested = None
    else:
        raise ValidationError({'scope': 'Provide certificate ids or an institution'})

    now = datetime.now(UTC)
    try:
        affected = [row.id for row in Certificate.query.filter(and_(*conditions)).all()]
        stmt = (
            update(Certificate)
            .where(and_(*conditions))
            .values(status=CertificateStatus.ISSUED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        issued = result.rowcount or 0
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.exception('[CERTIFICATE] bulk_issue failed for user_id=%s', caller.user_id)
        raise PersistenceError(str(e)) from e

    if requested is None:
        requested = issued
    logging.info('[CERTIFICATE] user_id=%s bulk_issue issued=%d requested=%d', caller.user_id, issued, requested)
    sink = _sink(sink)
    for cid in affected:
        sink.emit(LogAction.ISSUE, LogCategory.CERTIFICATE, details='Issued pending certificate',
                  metadata={'bulk': True}, user_id=caller.user_id, certificate_id=cid)
    if affected and current_app.config.get('NOTIFY_RECIPIENTS'):
        for cert in Certificate.query.filter(Certificate.id.in_(affected)).all():
            _notify_issued(cert)
    return {'requested': requested, 'issued': issued, 'skipped': requested - issued}


# -- reads ------------------------------------------------------------------

def find_by_verification_id(verification_id):
    if not isinstance(verification_id, str) or not verification_id or len(verification_id) > 64:
        return None
    return Certificate.query.filter_by(verification_id=verification_id).first()


def find_by_internal_id(certificate_id):
    if not isinstance(certificate_id, str) or not certificate_id or len(certificate_id) > 64:
        return None
    return db.session.get(Certificate, certificate_id)


def resolve_certificate(identifier):
    """Exact-match lookup on the verification-ID column, then the internal-ID column.

    Verification tokens (16 chars) and internal IDs (36-char UUIDs) can
    never equal each other, so the order only saves a query.
    """
    return find_by_verification_id(identifier) or find_by_internal_id(identifier)


def list_certificates(caller, institution_id=None):
    if institution_id in (None, ''):
        institution_id = caller.institution_id if caller else None
    query = Certificate.query
    if institution_id is None:
        if caller is None or caller.role != UserRole.ADMIN:
            raise AuthorizationError()
    else:
        try:
            institution_id = int(institution_id)
        except (TypeError, ValueError):
            raise ValidationError({'institution_id': 'Institution must be a number'})
        if not can_manage_institution(caller, institution_id):
            raise AuthorizationError()
        query = query.filter(Certificate.institution_id == institution_id)
    return query.order_by(Certificate.issue_date.desc(), Certificate.created_at.desc()).all()


def list_recipient_certificates(caller):
    """Certificates addressed to the caller's own e-mail address."""
    if caller is None or not caller.email:
        return []
    return (
        Certificate.query.filter(Certificate.recipient_email == caller.email.lower())
        .order_by(Certificate.issue_date.desc())
        .all()
    )


def institution_stats(caller, institution_id=None, today=None, months=6):
    """Certificate counts per status and issue month, members and verifications for one institution."""
    institution_id = _require_institution(caller, institution_id)
    today = today or date.today()

    by_status = {status: 0 for status in CertificateStatus.ALL}
    by_month = {}
    rows = db.session.query(Certificate.status, Certificate.expiry_date, Certificate.issue_date).filter(
        Certificate.institution_id == institution_id).all()
    for status, expiry_date, issue_date in rows:
        if status == CertificateStatus.ISSUED and expiry_date and today > expiry_date:
            status = CertificateStatus.EXPIRED
        by_status[status] = by_status.get(status, 0) + 1
        month = issue_date.strftime('%Y-%m')
        by_month[month] = by_month.get(month, 0) + 1

    # oldest first, ending with the current month
    year, month = today.year, today.month
    recent = []
    for _ in range(months):
        recent.append(f'{year:04d}-{month:02d}')
        year, month = (year, month - 1) if month > 1 else (year - 1, 12)
    recent.reverse()

    members = db.session.query(func.count(InstitutionUser.id)).filter(
        InstitutionUser.institution_id == institution_id).scalar() or 0
    verifications = db.session.query(func.count(ActivityLog.log_id)).filter(
        ActivityLog.institution_id == institution_id,
        ActivityLog.category == LogCategory.VERIFICATION,
        ActivityLog.status == LogStatus.SUCCESS,
    ).scalar() or 0

    return {
        'institution_id': institution_id,
        'total_certificates': len(rows),
        'active_certificates': by_status[CertificateStatus.ISSUED],
        'member_count': members,
        'total_verifications': verifications,
        'certificates_by_status': by_status,
        'certificates_by_month': [{'month': m, 'count': by_month.get(m, 0)} for m in recent],
    }


def get_certificate(caller, certificate_id):
    return _load_for_caller(caller, certificate_id)


def public_view(cert, base_url=None):
    """Fields safe to show to anyone holding the verification link."""
    base_url = base_url if base_url is not None else current_app.config['PUBLIC_BASE_URL']
    institution = cert.institution
    return {
        'verification_id': cert.verification_id,
        'verification_url': build_verification_url(base_url, cert.verification_id),
        'title': cert.title,
        'description': cert.description,
        'recipient_name': cert.recipient_name,
        'institution_name': institution.name if institution else None,
        'certificate_type': cert.certificate_type,
        'status': cert.effective_status(),
        'issue_date': format_date(cert.issue_date),
        'expiry_date': format_date(cert.expiry_date),
        'content_hash': cert.content_hash,
        'anchor_receipt': cert.anchor_receipt,
        'anchor_network': cert.anchor_network,
        'issued_by': cert.issued_by.name if cert.issued_by else None,
    }


def internal_view(cert, base_url=None):
    view = public_view(cert, base_url)
    view.update({
        'id': cert.id,
        'recipient_email': cert.recipient_email,
        'institution_id': cert.institution_id,
        'institution': cert.institution.getInfo() if cert.institution else None,
        'stored_status': cert.status,
        'artifact_kind': cert.artifact_kind,
        'artifact_content_type': cert.artifact_content_type,
        'design': json.loads(cert.design_data) if cert.design_data else None,
        'issued_by_user_id': cert.issued_by_user_id,
        'created_at': cert.created_at.isoformat() if cert.created_at else None,
        'updated_at': cert.updated_at.isoformat() if cert.updated_at else None,
    })
    return view


# -- verification ---------------------------------------------------------

def check_integrity(cert) -> str:
    """Re-hash the stored artifact: 'intact', 'mismatch' or 'unavailable'."""
    data = cert.artifact_bytes()
    if data is None:
        return 'unavailable'
    if compute_hash(data) == cert.content_hash:
        return 'intact'
    logging.warning('[VERIFY] stored artifact of %s no longer matches its hash', cert.id)
    return 'mismatch'


def verify_certificate(verification_id, sink=None, anchor=None):
    """Public verification by token: public fields plus integrity and validity."""
    cert = find_by_verification_id(verification_id)
    if cert is None:
        _sink(sink).emit(LogAction.VERIFY, LogCategory.VERIFICATION, status=LogStatus.FAILURE,
                         details='Verification attempted for unknown id')
        raise NotFoundError()

    integrity = check_integrity(cert)
    result = public_view(cert)
    result['integrity'] = integrity
    result['valid'] = result['status'] == CertificateStatus.ISSUED and integrity == 'intact'
    if cert.anchor_receipt:
        service = _anchor_service(anchor)
        result['anchor_confirmed'] = bool(service.enabled and service.verify(cert.anchor_receipt, cert.content_hash))

    _sink(sink).emit(
        LogAction.VERIFY, LogCategory.VERIFICATION,
        status=LogStatus.SUCCESS if integrity != 'mismatch' else LogStatus.FAILURE,
        details=f'Verified certificate {cert.verification_id}: {result["status"]}, artifact {integrity}',
        institution_id=cert.institution_id, certificate_id=cert.id,
    )
    return result


def verify_uploaded_file(upload, sink=None):
    """Hash an uploaded artifact and return the certificate whose stored hash matches."""
    errors = {}
    _check_upload(upload, current_app.config, errors)
    if errors:
        raise ValidationError(errors)
    content_hash = compute_hash(upload.data)
    cert = Certificate.query.filter_by(content_hash=content_hash).first()
    if cert is None:
        _sink(sink).emit(LogAction.VERIFY, LogCategory.VERIFICATION, status=LogStatus.FAILURE,
                         details='Uploaded file matches no certificate', metadata={'hash': content_hash})
        raise NotFoundError('No certificate matches this file')
    result = public_view(cert)
    result['valid'] = result['status'] == CertificateStatus.ISSUED
    result['matched_hash'] = content_hash
    _sink(sink).emit(LogAction.VERIFY, LogCategory.VERIFICATION,
                     details=f'Uploaded file matched certificate {cert.verification_id}',
                     institution_id=cert.institution_id, certificate_id=cert.id)
    return result


def get_artifact(cert):
    """Return (bytes, content_type, download filename) for a certificate's artifact."""
    data = cert.artifact_bytes()
    if data is None:
        raise NotFoundError('Certificate file not found')
    if cert.artifact_kind == 'upload' and cert.artifact_file is not None:
        ext = file_extension(cert.artifact_file.name) or 'bin'
    else:
        ext = cert.artifact_kind
    return data, cert.artifact_content_type, f'certificate-{cert.verification_id}.{ext}'


def recent_activity(certificate_id, limit=20):
    return (
        ActivityLog.query.filter_by(certificate_id=certificate_id)
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
        .all()
    )
