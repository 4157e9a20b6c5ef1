"""
Public verification endpoints. No login; responses only ever carry the
public view of a certificate.
"""
from flask import Blueprint, current_app, jsonify, request, Response

from models import LogAction, LogCategory
from certificate import (Upload, find_by_verification_id, get_artifact, resolve_certificate,
                         verify_certificate, verify_uploaded_file)
from errors import NotFoundError, ValidationError

verify_bp = Blueprint('verify', __name__)


@verify_bp.route('/verify/<verification_id>', methods=['GET'])
def verify_page(verification_id):
    return jsonify({'success': True, 'certificate': verify_certificate(verification_id)})


@verify_bp.route('/api/verify/certificate/<verification_id>', methods=['GET'])
def verify_api(verification_id):
    return jsonify({'success': True, 'certificate': verify_certificate(verification_id)})


@verify_bp.route('/api/verify/lookup', methods=['GET'])
def verify_lookup():
    """Accepts either a verification ID or an internal certificate ID."""
    identifier = (request.args.get('id') or '').strip()
    if not identifier:
        raise ValidationError({'id': 'Certificate ID is required'})
    cert = resolve_certificate(identifier)
    if cert is None:
        raise NotFoundError()
    return jsonify({'success': True, 'certificate': verify_certificate(cert.verification_id)})


@verify_bp.route('/api/verify/certificate/<verification_id>/download', methods=['GET'])
def verify_download(verification_id):
    cert = find_by_verification_id(verification_id)
    if cert is None:
        raise NotFoundError()
    data, content_type, filename = get_artifact(cert)
    current_app.extensions['activity_log'].emit(
        LogAction.DOWNLOAD, LogCategory.VERIFICATION,
        details=f'Downloaded certificate {cert.verification_id}',
        institution_id=cert.institution_id, certificate_id=cert.id,
    )
    return Response(data, mimetype=content_type,
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})


@verify_bp.route('/api/verify/upload', methods=['POST'])
def verify_upload():
    file = request.files.get('file')
    if file is None or not file.filename:
        raise ValidationError({'file': 'No file uploaded'})
    result = verify_uploaded_file(Upload(file.read(), file.filename, file.mimetype))
    return jsonify({'success': True, 'certificate': result})
