"""
Raster certificate rendering with Pillow.

Draws the designed certificate layout (background, border, logo, title,
recipient block, wrapped description, footer) onto a 1754x1240 canvas,
which is A4 landscape at 150 DPI, and serializes it to PNG.
"""
import logging
import re
import threading
from io import BytesIO
from typing import Callable, List, Optional

import requests
from PIL import Image, ImageDraw, ImageFont

from utils import decode_data_url, display_date, safe_parse_date, to_data_url

CANVAS_WIDTH = 1754
CANVAS_HEIGHT = 1240
BORDER_WIDTH = 16
BORDER_INSET = 24
LOGO_MAX_HEIGHT = 120
DESCRIPTION_MAX_WIDTH = 800
ACCENT_BAR_WIDTH = 300
ACCENT_BAR_HEIGHT = 4

DEFAULT_DESIGN = {
    'background_color': '#ffffff',
    'text_color': '#1f2937',
    'accent_color': '#2563eb',
    'font_size': 32,
    'show_border': True,
    'border_color': '#1e3a8a',
    'font_family': 'DejaVuSans',
    'show_logo': False,
    'logo_url': None,
}

_FALLBACK_FAMILIES = ('DejaVuSans', 'LiberationSans', 'Arial')
# family names end up in font file paths
FONT_FAMILY_RE = re.compile(r'^[A-Za-z0-9 _-]{1,64}$')
LOGO_MAX_BYTES = 5 * 1024 * 1024


class FontRegistry:
    """Resolves and caches fonts by (family, size, bold).

    Created once per process in create_app and handed to the renderer.
    """

    def __init__(self, font_dirs=None):
        self.font_dirs = list(font_dirs or [])
        self._cache = {}
        self._lock = threading.Lock()

    def _candidates(self, family, bold):
        names = []
        for fam in (family,) + _FALLBACK_FAMILIES:
            if not fam or not FONT_FAMILY_RE.match(fam):
                continue
            fam = fam.replace(' ', '')
            if bold:
                names.extend([f'{fam}-Bold.ttf', f'{fam}bd.ttf'])
            names.append(f'{fam}.ttf')
        in_dirs = [f'{directory}/{n}' for directory in self.font_dirs for n in names]
        return in_dirs + names

    def get(self, family, size, bold=False):
        key = (family, int(size), bool(bold))
        with self._lock:
            font = self._cache.get(key)
            if font is not None:
                return font
            for candidate in self._candidates(family, bold):
                try:
                    font = ImageFont.truetype(candidate, int(size))
                    break
                except OSError:
                    continue
            if font is None:
                logging.debug('[RENDER] No TrueType font for %s, using default', family)
                font = ImageFont.load_default(size=int(size))
            self._cache[key] = font
            return font


def wrap_text(text: Optional[str], max_width: float, measure: Callable[[str], float]) -> List[str]:
    """Greedy word wrap: accumulate words until the next one would exceed max_width.

    A single word wider than max_width sits alone on its line.
    """
    words = (text or '').split()
    lines = []
    line = ''
    for word in words:
        candidate = f'{line} {word}' if line else word
        if line and measure(candidate) > max_width:
            lines.append(line)
            line = word
        else:
            line = candidate
    if line:
        lines.append(line)
    return lines


def _fetch_logo(logo_url, timeout, max_bytes):
    resp = requests.get(logo_url, timeout=timeout, stream=True)
    try:
        resp.raise_for_status()
        chunks, size = [], 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            size += len(chunk)
            if size > max_bytes:
                raise ValueError(f'Logo exceeds {max_bytes} bytes')
            chunks.append(chunk)
        return b''.join(chunks)
    finally:
        resp.close()


def load_logo(logo_url: str, timeout: float, max_bytes: Optional[int] = None):
    """Fetch a logo from a data URL or http(s) URL. Raises on failure."""
    if logo_url.startswith('data:'):
        raw = decode_data_url(logo_url)
    elif logo_url.startswith(('http://', 'https://')):
        raw = _fetch_logo(logo_url, timeout, max_bytes or LOGO_MAX_BYTES)
    else:
        raise ValueError(f'Unsupported logo location: {logo_url[:40]}')
    logo = Image.open(BytesIO(raw))
    logo.load()
    return logo.convert('RGBA')


def _draw_text(draw, pos, text, font, fill, align='center'):
    """Draw text vertically centred on pos[1], horizontally aligned on pos[0]."""
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    w, h = right - left, bottom - top
    x, y = pos
    if align == 'center':
        x -= w / 2
    elif align == 'right':
        x -= w
    draw.text((x - left, y - h / 2 - top), text, font=font, fill=fill)


def generate_certificate_image(options: dict, fonts: Optional[FontRegistry] = None, logo_timeout: float = 5.0):
    """Render a designed certificate. Returns (png_bytes, data_url).

    `options` carries title, recipient_name, recipient_email, description,
    issued_date, certificate_id and the design keys of DEFAULT_DESIGN.
    A logo that cannot be loaded is logged and left out.
    """
    opts = dict(DEFAULT_DESIGN)
    opts.update({k: v for k, v in options.items() if v is not None})
    fonts = fonts or FontRegistry()
    family = opts['font_family']
    size = int(opts['font_size'])

    img = Image.new('RGB', (CANVAS_WIDTH, CANVAS_HEIGHT), opts['background_color'])
    draw = ImageDraw.Draw(img)

    if opts['show_border']:
        draw.rectangle(
            [BORDER_INSET, BORDER_INSET, CANVAS_WIDTH - BORDER_INSET, CANVAS_HEIGHT - BORDER_INSET],
            outline=opts['border_color'], width=BORDER_WIDTH,
        )

    center_x = CANVAS_WIDTH / 2
    current_y = 240 if opts['show_logo'] else 180

    if opts['show_logo'] and opts.get('logo_url'):
        try:
            logo = load_logo(opts['logo_url'], logo_timeout)
            logo_height = min(LOGO_MAX_HEIGHT, logo.height)
            logo_width = max(1, round(logo_height * logo.width / logo.height))
            logo = logo.resize((logo_width, logo_height))
            img.paste(logo, (int(center_x - logo_width / 2), int(current_y - 100)), logo)
            current_y += 40
        except Exception as e:
            logging.warning('[RENDER] Could not load logo for %s: %s', opts.get('certificate_id'), e)

    text_color = opts['text_color']

    _draw_text(draw, (center_x, current_y), opts['title'], fonts.get(family, size + 24, bold=True), text_color)
    current_y += 80

    draw.rectangle(
        [center_x - ACCENT_BAR_WIDTH / 2, current_y, center_x + ACCENT_BAR_WIDTH / 2, current_y + ACCENT_BAR_HEIGHT - 1],
        fill=opts['accent_color'],
    )
    current_y += 60

    _draw_text(draw, (center_x, current_y), 'This certificate is awarded to', fonts.get(family, size + 4), text_color)
    current_y += 60

    _draw_text(draw, (center_x, current_y), opts['recipient_name'], fonts.get(family, size + 16, bold=True), text_color)
    current_y += 60

    body_font = fonts.get(family, size)
    _draw_text(draw, (center_x, current_y), opts.get('recipient_email') or '', body_font, text_color)
    current_y += 80

    lines = wrap_text(opts.get('description'), DESCRIPTION_MAX_WIDTH, lambda s: draw.textlength(s, font=body_font))
    if lines:
        for i, line in enumerate(lines):
            if i:
                current_y += size * 1.5
            _draw_text(draw, (center_x, current_y), line, body_font, text_color)
        current_y += 80

    issued = safe_parse_date(opts.get('issued_date'))
    issued_text = display_date(issued) if issued else str(opts.get('issued_date') or '')
    _draw_text(draw, (center_x, current_y), f'Issued on: {issued_text}', fonts.get(family, size - 2), text_color)

    _draw_text(
        draw, (CANVAS_WIDTH - 60, CANVAS_HEIGHT - 40),
        f"Certificate ID: {opts['certificate_id']}", fonts.get(family, size - 4), text_color, align='right',
    )

    buffer = BytesIO()
    img.save(buffer, format='PNG')
    png_bytes = buffer.getvalue()
    return png_bytes, to_data_url(png_bytes, 'image/png')
