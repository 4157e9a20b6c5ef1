import logging
import os
from io import BytesIO

import qrcode
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from utils import compute_hash, display_date

# Layout is expressed in millimetres from the top-left corner of an A4
# landscape page; reportlab's origin is bottom-left so y is inverted below.
PAGE_WIDTH_MM = 297
PAGE_HEIGHT_MM = 210
CENTER_X_MM = PAGE_WIDTH_MM / 2

QR_X_MM = 20
QR_TOP_MM = 140
QR_SIZE_MM = 40


# TrueType families tried in order; Vera ships with reportlab itself.
_TTF_FAMILIES = (
    ('DejaVuSans.ttf', 'DejaVuSans-Bold.ttf'),
    ('LiberationSans-Regular.ttf', 'LiberationSans-Bold.ttf'),
    ('NotoSans-Regular.ttf', 'NotoSans-Bold.ttf'),
    ('Vera.ttf', 'VeraBd.ttf'),
)
_SYSTEM_FONT_DIRS = (
    '/usr/share/fonts/truetype/dejavu',
    '/usr/share/fonts/truetype/liberation',
    '/usr/share/fonts/truetype/noto',
    '/usr/share/fonts/dejavu',
    '/usr/share/fonts/TTF',
    '/Library/Fonts',
    'C:/Windows/Fonts',
)
CID_FALLBACK_FONT = 'STSong-Light'


def _load_ttf(filename, font_dirs):
    for directory in list(font_dirs) + [None]:
        path = os.path.join(directory, filename) if directory else filename
        try:
            return TTFont(os.path.splitext(filename)[0], path)
        except (OSError, TTFError):
            continue
    return None


class PdfFontSet:
    """Regular and bold faces for the PDF renderer, registered with reportlab once.

    Characters the TrueType face has no glyph for (CJK names, mostly) are
    drawn with reportlab's built-in Unicode CID font instead of being
    dropped. Created once per process in create_app.
    """

    def __init__(self, font_dirs=None):
        dirs = list(font_dirs or []) + list(_SYSTEM_FONT_DIRS)
        self.regular = self.bold = None
        for regular_file, bold_file in _TTF_FAMILIES:
            regular = _load_ttf(regular_file, dirs)
            if regular is None:
                continue
            bold = _load_ttf(bold_file, dirs) or regular
            for font in {regular.fontName: regular, bold.fontName: bold}.values():
                pdfmetrics.registerFont(font)
            self.regular, self.bold = regular.fontName, bold.fontName
            break
        if self.regular is None:
            logging.warning('[RENDER] No TrueType font found, PDF text limited to Latin-1')
            self.regular, self.bold = 'Helvetica', 'Helvetica-Bold'
        pdfmetrics.registerFont(UnicodeCIDFont(CID_FALLBACK_FONT))

    def _covers(self, font_name, ch):
        if font_name.startswith('Helvetica'):
            try:
                ch.encode('cp1252')
                return True
            except UnicodeEncodeError:
                return False
        return ord(ch) in pdfmetrics.getFont(font_name).face.charToGlyph

    def runs(self, text, bold=False):
        """Split text into (font_name, chunk) runs the fonts can actually draw."""
        primary = self.bold if bold else self.regular
        runs = []
        for ch in text:
            name = primary if ch.isspace() or self._covers(primary, ch) else CID_FALLBACK_FONT
            if runs and runs[-1][0] == name:
                runs[-1][1].append(ch)
            else:
                runs.append((name, [ch]))
        return [(name, ''.join(chars)) for name, chars in runs]

    def draw_centred(self, can, x, y, text, size, bold=False):
        runs = self.runs(text, bold)
        width = sum(pdfmetrics.stringWidth(chunk, name, size) for name, chunk in runs)
        cursor = x - width / 2
        for name, chunk in runs:
            can.setFont(name, size)
            can.drawString(cursor, y, chunk)
            cursor += pdfmetrics.stringWidth(chunk, name, size)


def _y(top_mm):
    return (PAGE_HEIGHT_MM - top_mm) * mm


def make_qr_image(data: str, size: int = 300):
    """Return a PIL image of a QR code encoding `data`."""
    qr = qrcode.QRCode(box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    return img.resize((size, size))


def generate_certificate_pdf(title, recipient_name, issue_date, institution_name,
                             certificate_id, verification_url, expiry_date=None, fonts=None):
    """Render a landscape A4 certificate and return (pdf_bytes, sha256_hex).

    A QR code failure is logged and the page is produced without it; the
    verification URL is always printed as text.
    """
    fonts = fonts or PdfFontSet()
    packet = BytesIO()
    # invariant=1 pins the creation date and document ID so equal inputs give equal bytes
    can = canvas.Canvas(packet, pagesize=landscape(A4), invariant=1)
    can.setTitle(title)
    can.setAuthor(institution_name)
    center_x = CENTER_X_MM * mm

    # Background and border
    can.setFillColorRGB(245 / 255, 245 / 255, 245 / 255)
    can.rect(0, 0, PAGE_WIDTH_MM * mm, PAGE_HEIGHT_MM * mm, stroke=0, fill=1)
    can.setStrokeColorRGB(50 / 255, 50 / 255, 50 / 255)
    can.setLineWidth(0.5 * mm)
    can.rect(10 * mm, 10 * mm, (PAGE_WIDTH_MM - 20) * mm, (PAGE_HEIGHT_MM - 20) * mm, stroke=1, fill=0)

    can.setFillColorRGB(44 / 255, 62 / 255, 80 / 255)
    fonts.draw_centred(can, center_x, _y(40), title, 24, bold=True)

    can.setFillColorRGB(0, 0, 0)
    fonts.draw_centred(can, center_x, _y(60), "This is to certify that", 14)
    fonts.draw_centred(can, center_x, _y(80), recipient_name, 22, bold=True)
    fonts.draw_centred(can, center_x, _y(100), f"has been issued this certificate by {institution_name}", 14)

    fonts.draw_centred(can, center_x, _y(120), f"Issue Date: {display_date(issue_date)}", 12)
    if expiry_date:
        fonts.draw_centred(can, center_x, _y(130), f"Expiry Date: {display_date(expiry_date)}", 12)

    fonts.draw_centred(can, center_x, _y(150), f"Certificate ID: {certificate_id}", 10)

    try:
        qr_img = make_qr_image(verification_url)
        can.drawImage(ImageReader(qr_img), QR_X_MM * mm, _y(QR_TOP_MM + QR_SIZE_MM),
                      width=QR_SIZE_MM * mm, height=QR_SIZE_MM * mm)
        fonts.draw_centred(can, (QR_X_MM + QR_SIZE_MM / 2) * mm, _y(185), "Scan to verify", 8)
    except Exception:
        logging.exception('[RENDER] QR code generation failed for %s, continuing without it', certificate_id)

    fonts.draw_centred(can, center_x, _y(170), f"Verify this certificate at: {verification_url}", 10)

    can.showPage()
    can.save()
    pdf_bytes = packet.getvalue()
    return pdf_bytes, compute_hash(pdf_bytes)
