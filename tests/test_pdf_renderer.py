from datetime import date

import generate_certificate
from generate_certificate import CID_FALLBACK_FONT, PdfFontSet, generate_certificate_pdf, make_qr_image
from utils import compute_hash


def _render(**overrides):
    kwargs = dict(
        title='Certificate of Completion',
        recipient_name='Jane Doe',
        issue_date=date(2024, 1, 1),
        institution_name='Acme University',
        certificate_id='abc123',
        verification_url='https://certs.example.org/verify/abc123',
    )
    kwargs.update(overrides)
    return generate_certificate_pdf(**kwargs)


def test_pdf_bytes_and_hash():
    pdf, digest = _render()
    assert pdf.startswith(b'%PDF')
    assert len(digest) == 64
    assert digest == compute_hash(pdf)


def test_pdf_is_deterministic():
    assert _render() == _render()


def test_expiry_changes_output():
    pdf, digest = _render()
    pdf2, digest2 = _render(expiry_date=date(2025, 1, 1))
    assert digest != digest2


def test_qr_failure_still_renders(monkeypatch, caplog):
    _with_qr, digest_with_qr = _render()

    def boom(*args, **kwargs):
        raise RuntimeError('qr encoder unavailable')

    monkeypatch.setattr(generate_certificate, 'make_qr_image', boom)
    pdf, digest = _render()
    assert pdf.startswith(b'%PDF')
    # the hash covers the degraded page, not the one with a QR code
    assert digest == compute_hash(pdf)
    assert digest != digest_with_qr
    assert any('[RENDER]' in r.getMessage() for r in caplog.records)


def test_qr_image_size():
    img = make_qr_image('https://certs.example.org/verify/abc123', size=120)
    assert img.size == (120, 120)
    assert img.mode == 'RGB'


def test_non_latin_names_use_real_glyphs():
    pdf, _ = _render(recipient_name='张伟 Łukasz', institution_name='Université de Genève')
    assert b'ZapfDingbats' not in pdf
    # CJK falls back to the built-in CID font
    assert CID_FALLBACK_FONT.encode() in pdf
    assert _render(recipient_name='张伟 Łukasz', institution_name='Université de Genève')[0] == pdf


def test_font_runs_cover_every_character():
    fonts = PdfFontSet()
    runs = fonts.runs('张伟 Smith', bold=True)
    assert ''.join(chunk for _name, chunk in runs) == '张伟 Smith'
    assert runs[0] == (CID_FALLBACK_FONT, '张伟')
    assert runs[-1][0] == fonts.bold
    assert fonts.runs('Jane Doe') == [(fonts.regular, 'Jane Doe')]
