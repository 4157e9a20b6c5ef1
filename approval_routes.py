from flask import Blueprint, request, jsonify, session
from flask_login import login_required, current_user
import secrets

from models import Certificate, CertificateStatus, UserRole
from certificate import caller_from_user, bulk_issue, can_manage_institution, internal_view
from errors import AuthorizationError, ValidationError

approval_bp = Blueprint('approval', __name__, url_prefix='/api/certificates')

def _get_csrf_token() -> str:
    tok = session.get('csrf_token')
    if not tok:
        # Lazy-generate a token if missing
        tok = secrets.token_urlsafe(32)
        session['csrf_token'] = tok
    return tok

@approval_bp.route('/pending', methods=['GET'])
@login_required
def pending_certificates():
    """PENDING certificates the caller may issue, plus the CSRF token bulk_issue expects."""
    caller = caller_from_user(current_user)
    if caller.role not in (UserRole.ADMIN, UserRole.INSTITUTION):
        raise AuthorizationError()
    query = Certificate.query.filter(Certificate.status == CertificateStatus.PENDING)
    institution_id = request.args.get('institution_id', type=int)
    if institution_id is not None:
        if not can_manage_institution(caller, institution_id):
            raise AuthorizationError()
        query = query.filter(Certificate.institution_id == institution_id)
    rows = [c for c in query.order_by(Certificate.created_at.desc()).limit(500).all()
            if can_manage_institution(caller, c.institution_id)]
    return jsonify({
        'success': True,
        'certificates': [internal_view(c) for c in rows],
        'csrf_token': _get_csrf_token(),
    })

@approval_bp.route('/bulk_issue', methods=['POST'])
@login_required
def bulk_issue_route():
    caller = caller_from_user(current_user)
    if caller.role not in (UserRole.ADMIN, UserRole.INSTITUTION):
        raise AuthorizationError()
    # CSRF: expect header X-CSRFToken matching session
    header_token = request.headers.get('X-CSRFToken') or request.headers.get('X-CSRF-Token')
    if not header_token or header_token != session.get('csrf_token'):
        return jsonify({'success': False, 'message': 'csrf_failed'}), 400

    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError({'body': 'Request body must be a JSON object'})
    scope = payload.get('scope') or ('selected' if 'ids' in payload else None)
    if scope == 'selected':
        result = bulk_issue(caller, certificate_ids=payload.get('ids'))
    elif scope == 'institution':
        institution_id = payload.get('institution_id') or caller.institution_id
        if not isinstance(institution_id, int):
            raise ValidationError({'institution_id': 'invalid_institution_id'})
        result = bulk_issue(caller, institution_id=institution_id)
    else:
        raise ValidationError({'scope': 'invalid_scope'})

    return jsonify({'success': True, **result}), 200
