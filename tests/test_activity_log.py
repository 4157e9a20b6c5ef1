from datetime import date, datetime, timedelta

from activity_log import ActivityLogSink, list_logs, log_stats
from models import db, ActivityLog, LogAction, LogCategory, LogStatus


def _entry(action, category, status=LogStatus.SUCCESS, created_at=None, details=None):
    row = ActivityLog(action=action, category=category, status=status, details=details,
                      created_at=created_at)
    db.session.add(row)
    return row


def test_sink_writes_immediately(ctx):
    sink = ActivityLogSink()
    sink.init_app(ctx)
    assert ctx.extensions['activity_log'] is sink
    sink.emit(LogAction.VERIFY, LogCategory.VERIFICATION, details='written entry')
    row = ActivityLog.query.filter_by(details='written entry').one()
    assert row.status == LogStatus.SUCCESS
    assert row.ip_address is None


def test_list_logs_filters_and_pages(ctx):
    base = datetime(2026, 10, 14, 12, 0)
    for i in range(5):
        _entry(LogAction.VERIFY, LogCategory.VERIFICATION, created_at=base + timedelta(hours=i),
               details=f'verify {i}')
    _entry(LogAction.CREATE, LogCategory.CERTIFICATE, created_at=base - timedelta(days=3),
           details='created diploma')
    _entry(LogAction.VERIFY, LogCategory.VERIFICATION, status=LogStatus.FAILURE,
           created_at=base + timedelta(days=1), details='unknown id')
    db.session.commit()

    result = list_logs(category=LogCategory.VERIFICATION, limit=2)
    assert result['pagination'] == {'page': 1, 'limit': 2, 'total': 6, 'pages': 3}
    assert result['logs'][0]['details'] == 'unknown id'

    assert list_logs(status=LogStatus.FAILURE)['pagination']['total'] == 1
    assert list_logs(search='diploma')['logs'][0]['action'] == LogAction.CREATE
    # end date covers the whole day
    same_day = list_logs(start_date=date(2026, 10, 14), end_date=date(2026, 10, 14))
    assert same_day['pagination']['total'] == 5
    assert list_logs(limit=1000)['pagination']['limit'] == 100


def test_log_stats_windows(ctx):
    # Thursday
    now = datetime(2026, 10, 15, 9, 30)
    _entry(LogAction.VERIFY, LogCategory.VERIFICATION, created_at=now - timedelta(hours=1))
    _entry(LogAction.VERIFY, LogCategory.VERIFICATION, status=LogStatus.FAILURE,
           created_at=now - timedelta(days=1))
    _entry(LogAction.CREATE, LogCategory.CERTIFICATE, created_at=datetime(2026, 10, 11, 8, 0))
    _entry(LogAction.CREATE, LogCategory.CERTIFICATE, created_at=datetime(2026, 10, 2, 8, 0))
    _entry(LogAction.LOGIN, LogCategory.AUTH, created_at=datetime(2026, 9, 30, 8, 0))
    db.session.commit()

    stats = log_stats(now=now)
    assert stats['total'] == 5
    assert stats['today'] == 1
    assert stats['yesterday'] == 1
    # week starts on Sunday 2026-10-11
    assert stats['this_week'] == 3
    assert stats['this_month'] == 4
    assert [d['date'] for d in stats['daily_activity']][-1] == '2026-10-15'
    assert sum(d['count'] for d in stats['daily_activity']) == 3
    assert stats['by_category'] == {'VERIFICATION': 2, 'CERTIFICATE': 2, 'AUTH': 1}
    assert stats['verifications'] == {'total': 2, 'successful': 1, 'failed': 1}
