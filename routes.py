from flask import Blueprint, current_app, jsonify, request, Response
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import text
import json
import logging

from models import db, User, LogAction, LogCategory, LogStatus
from certificate import (Upload, caller_from_user, create_certificate, get_artifact, get_certificate,
                         institution_stats, internal_view, list_certificates, list_recipient_certificates,
                         list_templates, recent_activity, save_template, update_certificate)
from errors import ValidationError

main_bp = Blueprint('main', __name__)

# camelCase names accepted from browser clients
_FIELD_ALIASES = {
    'recipientName': 'recipient_name',
    'recipientEmail': 'recipient_email',
    'issueDate': 'issue_date',
    'expiryDate': 'expiry_date',
    'institutionId': 'institution_id',
    'certificateType': 'certificate_type',
    'type': 'certificate_type',
    'designData': 'design',
    'verificationId': 'verification_id',
    'contentHash': 'content_hash',
    'templateId': 'template_id',
    'templateData': 'template',
}


def _normalize(payload):
    data = {}
    for key, value in payload.items():
        data[_FIELD_ALIASES.get(key, key)] = value
    return data


def _request_payload():
    """Return (fields, upload) from a JSON body or a multipart form."""
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError({'body': 'Request body must be a JSON object'})
        return _normalize(payload), None
    fields = _normalize(request.form.to_dict())
    upload = None
    file = request.files.get('file')
    if file is not None and file.filename:
        upload = Upload(file.read(), file.filename, file.mimetype)
    return fields, upload


def _sink():
    return current_app.extensions['activity_log']


@main_bp.route('/health', methods=['GET'])
def health():
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except Exception:
        logging.exception('[HEALTH] database check failed')
        database = 'unavailable'
    status = 200 if database == 'ok' else 503
    return jsonify({'status': 'ok' if status == 200 else 'degraded', 'database': database}), status


@main_bp.route('/login', methods=['POST'])
def login():
    payload = request.get_json(silent=True) if request.is_json else request.form
    payload = payload or {}
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''
    if not email or not password:
        return jsonify({'success': False, 'message': 'Email and password are required'}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        _sink().emit(LogAction.LOGIN, LogCategory.AUTH, status=LogStatus.FAILURE,
                     details=f'Failed login for {email}')
        return jsonify({'success': False, 'message': 'Invalid email or password'}), 401

    login_user(user)
    _sink().emit(LogAction.LOGIN, LogCategory.AUTH, details=f'{user.name} logged in',
                 user_id=user.user_id, institution_id=user.primary_institution_id)
    return jsonify({
        'success': True,
        'user': {
            'user_id': user.user_id,
            'name': user.name,
            'email': user.email,
            'role': user.role,
            'institution_id': user.primary_institution_id,
        },
    })


@main_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    _sink().emit(LogAction.LOGOUT, LogCategory.AUTH, status=LogStatus.INFO,
                 details=f'{current_user.name} logged out', user_id=current_user.user_id)
    logout_user()
    return jsonify({'success': True})


@main_bp.route('/api/certificates', methods=['POST'])
@login_required
def create_certificate_route():
    fields, upload = _request_payload()
    cert = create_certificate(caller_from_user(current_user), fields, upload=upload)
    return jsonify({
        'success': True,
        'message': 'Certificate created successfully',
        'certificate': internal_view(cert),
    }), 201


@main_bp.route('/api/certificates', methods=['GET'])
@login_required
def list_certificates_route():
    certs = list_certificates(caller_from_user(current_user), request.args.get('institution_id'))
    return jsonify({'success': True, 'certificates': [internal_view(c) for c in certs]})


@main_bp.route('/api/certificates/<certificate_id>', methods=['GET'])
@login_required
def get_certificate_route(certificate_id):
    cert = get_certificate(caller_from_user(current_user), certificate_id)
    return jsonify({
        'success': True,
        'certificate': internal_view(cert),
        'activity': [log.to_dict() for log in recent_activity(cert.id)],
    })


@main_bp.route('/api/certificates/<certificate_id>', methods=['PUT', 'PATCH'])
@login_required
def update_certificate_route(certificate_id):
    fields, _upload = _request_payload()
    cert = update_certificate(caller_from_user(current_user), certificate_id, fields)
    return jsonify({
        'success': True,
        'message': 'Certificate updated successfully',
        'certificate': internal_view(cert),
    })


@main_bp.route('/api/certificates/<certificate_id>/artifact', methods=['GET'])
@login_required
def certificate_artifact(certificate_id):
    cert = get_certificate(caller_from_user(current_user), certificate_id)
    data, content_type, filename = get_artifact(cert)
    return Response(data, mimetype=content_type,
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})


@main_bp.route('/api/user/certificates', methods=['GET'])
@login_required
def my_certificates():
    certs = list_recipient_certificates(caller_from_user(current_user))
    return jsonify({'success': True, 'certificates': [internal_view(c) for c in certs]})


@main_bp.route('/api/institution/certificate-templates', methods=['GET'])
@login_required
def list_templates_route():
    institution_id = request.args.get('institution_id') or request.args.get('institutionId')
    templates = list_templates(caller_from_user(current_user), institution_id)
    return jsonify({'success': True, 'templates': templates})


@main_bp.route('/api/institution/certificate-templates', methods=['POST'])
@login_required
def save_template_route():
    fields, _upload = _request_payload()
    template = fields.get('template')
    if isinstance(template, str):
        try:
            template = json.loads(template)
        except ValueError:
            raise ValidationError({'template': 'Template data must be valid JSON'})
    saved = save_template(caller_from_user(current_user), fields.get('institution_id'), template)
    return jsonify({
        'success': True,
        'message': 'Certificate template saved successfully',
        'template': saved,
    })


@main_bp.route('/api/analytics/institution', methods=['GET'])
@login_required
def institution_stats_route():
    institution_id = request.args.get('institution_id') or request.args.get('institutionId')
    stats = institution_stats(caller_from_user(current_user), institution_id)
    return jsonify({'success': True, **stats})
