from io import BytesIO

import pytest
import requests
from PIL import Image, ImageDraw

import certificate_image
from certificate_image import (CANVAS_HEIGHT, CANVAS_WIDTH, DEFAULT_DESIGN, DESCRIPTION_MAX_WIDTH, FontRegistry,
                               generate_certificate_image, load_logo, wrap_text)
from utils import decode_data_url, to_data_url

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


@pytest.fixture(scope='module')
def fonts():
    return FontRegistry()


def _options(**overrides):
    opts = {
        'title': 'Certificate of Completion',
        'recipient_name': 'Jane Doe',
        'recipient_email': 'jane@example.com',
        'description': 'For completing the introductory course on verifiable credentials.',
        'issued_date': '2024-01-01',
        'certificate_id': 'abc123',
    }
    opts.update(overrides)
    return opts


def _logo_data_url(color='red', size=(400, 200)):
    buf = BytesIO()
    Image.new('RGB', size, color).save(buf, format='PNG')
    return to_data_url(buf.getvalue(), 'image/png')


def test_png_output_and_data_url(fonts):
    png, data_url = generate_certificate_image(_options(), fonts=fonts)
    assert png.startswith(PNG_SIGNATURE)
    assert decode_data_url(data_url) == png
    with Image.open(BytesIO(png)) as img:
        assert img.size == (CANVAS_WIDTH, CANVAS_HEIGHT)


def test_design_colours_are_applied(fonts):
    png, _ = generate_certificate_image(_options(background_color='#000000', show_border=False), fonts=fonts)
    with Image.open(BytesIO(png)) as img:
        assert img.convert('RGB').getpixel((5, 5)) == (0, 0, 0)


def test_border_drawn_inside_inset(fonts):
    png, _ = generate_certificate_image(_options(border_color='#ff0000', show_border=True), fonts=fonts)
    with Image.open(BytesIO(png)) as img:
        assert img.convert('RGB').getpixel((30, CANVAS_HEIGHT // 2)) == (255, 0, 0)
        assert img.convert('RGB').getpixel((5, CANVAS_HEIGHT // 2)) == (255, 255, 255)


def test_unreachable_logo_is_skipped(fonts, monkeypatch, caplog):
    def unreachable(*args, **kwargs):
        raise requests.ConnectionError('no route to host')

    monkeypatch.setattr(certificate_image.requests, 'get', unreachable)
    png, _ = generate_certificate_image(
        _options(show_logo=True, logo_url='https://logos.example.org/acme.png'), fonts=fonts)
    assert png.startswith(PNG_SIGNATURE)
    assert any('Could not load logo' in r.getMessage() for r in caplog.records)


def test_data_url_logo_is_drawn(fonts):
    without, _ = generate_certificate_image(_options(show_logo=True), fonts=fonts)
    with_logo, _ = generate_certificate_image(_options(show_logo=True, logo_url=_logo_data_url()), fonts=fonts)
    assert without != with_logo
    with Image.open(BytesIO(with_logo)) as img:
        # logo is centred horizontally, 100px above the first text line
        assert img.convert('RGB').getpixel((CANVAS_WIDTH // 2, 200)) == (255, 0, 0)


def test_empty_description_draws_no_block(fonts):
    a, _ = generate_certificate_image(_options(description=''), fonts=fonts)
    b, _ = generate_certificate_image(_options(description=None), fonts=fonts)
    assert a == b


def test_wrap_text_stays_within_width():
    measure = len
    text = 'one two three four five six seven eight nine ten'
    lines = wrap_text(text, 12, measure)
    assert ' '.join(lines) == text
    assert all(measure(line) <= 12 for line in lines)


def test_wrap_text_long_word_on_its_own_line():
    lines = wrap_text('a supercalifragilistic b', 5, len)
    assert lines == ['a', 'supercalifragilistic', 'b']


def test_wrap_text_empty():
    assert wrap_text('', DESCRIPTION_MAX_WIDTH, len) == []
    assert wrap_text(None, DESCRIPTION_MAX_WIDTH, len) == []


def test_font_registry_caches(fonts):
    assert fonts.get('NoSuchFamily', 20) is fonts.get('NoSuchFamily', 20)
    assert fonts.get('NoSuchFamily', 20, bold=True) is not None


def test_description_lines_fit_under_real_font(fonts):
    font = fonts.get(DEFAULT_DESIGN['font_family'], DEFAULT_DESIGN['font_size'])
    draw = ImageDraw.Draw(Image.new('RGB', (10, 10)))
    text = ('Awarded for completing all twelve modules of the advanced programme in applied '
            'cryptography, distributed ledgers and verifiable credential infrastructure, '
            'including the capstone project and the final written examination.')
    lines = wrap_text(text, DESCRIPTION_MAX_WIDTH, lambda s: draw.textlength(s, font=font))
    assert len(lines) > 1
    assert ' '.join(lines) == text
    assert all(draw.textlength(line, font=font) <= DESCRIPTION_MAX_WIDTH for line in lines)


class _StreamedResponse:

    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def raise_for_status(self):
        pass

    def iter_content(self, chunk_size=1):
        yield from self.chunks

    def close(self):
        self.closed = True


def test_oversized_remote_logo_is_skipped(fonts, monkeypatch, caplog):
    response = _StreamedResponse([b'\0' * 1024] * 8)
    requested = {}

    def fake_get(url, **kwargs):
        requested.update(kwargs)
        return response

    monkeypatch.setattr(certificate_image.requests, 'get', fake_get)
    with pytest.raises(ValueError):
        load_logo('https://logos.example.org/huge.png', timeout=2.0, max_bytes=4096)
    assert requested == {'timeout': 2.0, 'stream': True}
    assert response.closed

    monkeypatch.setattr(certificate_image, 'LOGO_MAX_BYTES', 4096)
    png, _ = generate_certificate_image(
        _options(show_logo=True, logo_url='https://logos.example.org/huge.png'), fonts=fonts)
    assert png.startswith(PNG_SIGNATURE)
    assert any('Could not load logo' in r.getMessage() for r in caplog.records)


def test_font_registry_ignores_path_like_families(fonts):
    candidates = fonts._candidates('../../etc/passwd', False)
    assert candidates
    assert not any('..' in c for c in candidates)
