"""
Advisory activity log: a fire-and-forget sink plus the admin queries over it.

The sink never raises into the caller. Each entry is written in its own
transaction after the primary operation has committed.
"""
import logging
from datetime import datetime, timedelta, UTC

from sqlalchemy import func

from models import db, ActivityLog, LogCategory, LogStatus


def request_metadata():
    """Return ip/user agent of the current request, or empty values outside one."""
    from flask import has_request_context, request
    if not has_request_context():
        return {'ip_address': None, 'user_agent': None}
    forwarded = request.headers.get('X-Forwarded-For', '')
    ip = forwarded.split(',')[0].strip() or request.headers.get('X-Real-IP') or request.remote_addr
    ua = request.headers.get('User-Agent')
    return {'ip_address': ip, 'user_agent': ua[:255] if ua else None}


class ActivityLogSink:

    def __init__(self, app=None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        app.extensions['activity_log'] = self

    def emit(self, action, category, status=LogStatus.SUCCESS, details=None, metadata=None,
             user_id=None, institution_id=None, certificate_id=None):
        entry = {
            'action': action,
            'category': category,
            'status': status,
            'details': details,
            'meta': metadata,
            'user_id': user_id,
            'institution_id': institution_id,
            'certificate_id': certificate_id,
        }
        entry.update(request_metadata())
        self._write(entry)

    def _write(self, entry):
        try:
            db.session.add(ActivityLog(**entry))
            db.session.commit()
        except Exception:
            logging.exception('[ACTIVITY] Failed to record %s/%s', entry.get('category'), entry.get('action'))
            db.session.rollback()


def list_logs(page=1, limit=20, category=None, status=None, action=None, user_id=None,
              start_date=None, end_date=None, search=None):
    """Filtered, paginated activity entries, newest first."""
    page = max(1, int(page or 1))
    limit = min(100, max(1, int(limit or 20)))
    query = ActivityLog.query
    if category:
        query = query.filter(ActivityLog.category == category)
    if status:
        query = query.filter(ActivityLog.status == status)
    if action:
        query = query.filter(ActivityLog.action == action)
    if user_id:
        query = query.filter(ActivityLog.user_id == int(user_id))
    if start_date:
        query = query.filter(ActivityLog.created_at >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        # inclusive of the whole end day
        end = datetime.combine(end_date, datetime.min.time()) + timedelta(days=1)
        query = query.filter(ActivityLog.created_at < end)
    if search:
        query = query.filter(ActivityLog.details.ilike(f'%{search}%'))

    total = query.count()
    rows = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.log_id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'logs': [r.to_dict() for r in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    }


def _count_since(start, end=None, **filters):
    q = db.session.query(func.count(ActivityLog.log_id)).filter(ActivityLog.created_at >= start)
    if end is not None:
        q = q.filter(ActivityLog.created_at < end)
    for column, value in filters.items():
        q = q.filter(getattr(ActivityLog, column) == value)
    return q.scalar() or 0


def log_stats(now=None):
    # created_at is stored as naive UTC
    now = now or datetime.now(UTC).replace(tzinfo=None)
    today = datetime(now.year, now.month, now.day)
    yesterday = today - timedelta(days=1)
    # week starts on Sunday
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    month_start = datetime(now.year, now.month, 1)

    daily = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        daily.append({'date': day.date().isoformat(), 'count': _count_since(day, day + timedelta(days=1))})

    verification = db.session.query(ActivityLog.status, func.count(ActivityLog.log_id)).filter(
        ActivityLog.category == LogCategory.VERIFICATION
    ).group_by(ActivityLog.status).all()
    by_status = dict(verification)

    by_category = dict(
        db.session.query(ActivityLog.category, func.count(ActivityLog.log_id)).group_by(ActivityLog.category).all()
    )

    return {
        'total': db.session.query(func.count(ActivityLog.log_id)).scalar() or 0,
        'today': _count_since(today),
        'yesterday': _count_since(yesterday, today),
        'this_week': _count_since(week_start),
        'this_month': _count_since(month_start),
        'daily_activity': daily,
        'by_category': by_category,
        'verifications': {
            'total': sum(by_status.values()),
            'successful': by_status.get(LogStatus.SUCCESS, 0),
            'failed': by_status.get(LogStatus.FAILURE, 0),
        },
    }
