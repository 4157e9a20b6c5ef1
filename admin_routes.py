from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from functools import wraps
import logging

from models import UserRole
from activity_log import list_logs, log_stats
from errors import AuthorizationError, ValidationError
from utils import safe_parse_date

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if getattr(current_user, 'role', None) != UserRole.ADMIN:
            logging.info('[ADMIN] user %s denied %s', getattr(current_user, 'user_id', None), request.path)
            raise AuthorizationError()
        return view(*args, **kwargs)
    return wrapper


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    parsed = safe_parse_date(raw)
    if parsed is None:
        raise ValidationError({name: f'{name} must be a valid date (YYYY-MM-DD)'})
    return parsed


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError({name: f'{name} must be a number'})


@admin_bp.route('/logs', methods=['GET'])
@login_required
@admin_required
def activity_logs():
    result = list_logs(
        page=_int_arg('page', 1),
        limit=_int_arg('limit', 20),
        category=request.args.get('category') or None,
        status=request.args.get('status') or None,
        action=request.args.get('action') or None,
        user_id=_int_arg('user_id', None),
        start_date=_date_arg('start_date'),
        end_date=_date_arg('end_date'),
        search=(request.args.get('search') or '').strip() or None,
    )
    return jsonify({'success': True, **result})


@admin_bp.route('/logs/stats', methods=['GET'])
@login_required
@admin_required
def activity_log_stats():
    return jsonify({'success': True, 'stats': log_stats()})
