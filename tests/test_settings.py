from anchoring import LedgerStubAnchorService, NullAnchorService, build_anchor_service
from database import normalize_pg_url_for_sqlalchemy
from settings import get_config, get_server_config


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('DATABASE_URL', 'sqlite:///other.db')
    monkeypatch.setenv('PUBLIC_BASE_URL', 'https://verify.example.org')
    monkeypatch.setenv('MAX_UPLOAD_BYTES', '1024')
    config = get_config()
    assert config['SQLALCHEMY_DATABASE_URI'] == 'sqlite:///other.db'
    assert config['PUBLIC_BASE_URL'] == 'https://verify.example.org'
    assert config['MAX_UPLOAD_BYTES'] == 1024


def test_defaults(monkeypatch):
    for name in ('DATABASE_URL', 'ARTIFACT_FORMAT', 'NOTIFY_RECIPIENTS', 'PORT', 'FLASK_DEBUG'):
        monkeypatch.delenv(name, raising=False)
    config = get_config()
    assert config['ARTIFACT_FORMAT'] == 'pdf'
    assert config['NOTIFY_RECIPIENTS'] is False
    assert 'json' in config['ALLOWED_UPLOAD_EXTENSIONS']
    server = get_server_config()
    assert server['port'] == 5000
    assert server['debug'] is False


def test_postgres_url_normalised():
    url = normalize_pg_url_for_sqlalchemy('postgres://u:p@db:5432/certs')
    assert url.startswith('postgresql')
    assert normalize_pg_url_for_sqlalchemy('sqlite:///:memory:') == 'sqlite:///:memory:'


def test_anchor_backends():
    assert isinstance(build_anchor_service('ledger-stub'), LedgerStubAnchorService)
    assert isinstance(build_anchor_service('none'), NullAnchorService)
    assert isinstance(build_anchor_service('mystery-chain'), NullAnchorService)

    stub = LedgerStubAnchorService()
    receipt = stub.submit('ab' * 32)
    assert stub.verify(receipt, 'ab' * 32)
    assert not stub.verify(receipt, 'cd' * 32)


def test_init_schema_reports_complete(app):
    from database import init_schema, missing_tables
    from models import db
    assert init_schema(app) is True
    with app.app_context():
        assert missing_tables(db.engine) == []
