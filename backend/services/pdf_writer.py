"""
Raw PDF Writer - builds a single-page PDF byte stream without any PDF library.

The document always holds exactly five objects:
    1 Catalog -> 2 Pages -> 3 Page -> 4 Font (Helvetica, standard 14, not embedded)
    5 Content stream
followed by a 6-entry cross-reference table and a trailer pointing at the Catalog.

Offsets are recorded by PdfObjectTable at the moment each object is appended,
from a running count of the bytes already emitted. Nothing is computed after
the fact, so the xref always points at the first byte of "N 0 obj".

Layout is a known approximation: fixed column wrapping by whole words, a single
Letter-size page, and silent truncation once the bottom margin is reached.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


PDF_HEADER = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n"
TEXT_ENCODING = "cp1252"

PAGE_WIDTH = 612
PAGE_HEIGHT = 792
LEFT_MARGIN = 50
TOP_Y = 750
BOTTOM_MARGIN = 50

TITLE_FONT_SIZE = 18
SUBTITLE_FONT_SIZE = 12
SECTION_HEADER_FONT_SIZE = 11
BODY_FONT_SIZE = 9

SUBTITLE_GAP = 24
TITLE_BLOCK_GAP = 36
SECTION_GAP = 20
HEADER_TO_BODY_GAP = 16
BODY_LEADING = 12

DEFAULT_WRAP_WIDTH = 75

# Leading run of capitals (accents included) followed by a colon, e.g. "DÉTAIL DES PIÈCES:"
SECTION_HEADER_RE = re.compile(r"^([A-ZÀ-ÖØ-ÞŒ][A-ZÀ-ÖØ-ÞŒ\s']*):")


def escape_pdf_text(text: str) -> str:
    """Escape a string for use inside a PDF literal string `( ... )`."""
    text = re.sub(r"[\r\n]+", " ", text or "")
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def wrap_text(text: str, width: int = DEFAULT_WRAP_WIDTH) -> List[str]:
    """Greedy whole-word wrap. Words longer than the width get a line of their own."""
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= width:
            current = candidate
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def split_section_header(section: str):
    """Return (header, body). header is None when the section has no capitalised lead-in."""
    match = SECTION_HEADER_RE.match(section)
    if not match:
        return None, section.strip()
    header = match.group(1).strip()
    return header, section[match.end():].strip()


class ContentStream:
    """
    Forward-only text program for the page content stream.

    Tracks the current baseline so the layout can stop before the bottom margin.
    """

    def __init__(self, left: int = LEFT_MARGIN, top: int = TOP_Y, bottom: int = BOTTOM_MARGIN):
        self.left = left
        self.bottom = bottom
        self.y = top
        self.truncated = False
        self._ops: List[str] = []
        self._started = False
        self._font_size: Optional[int] = None

    def begin_text(self) -> None:
        self._ops.append("BT")

    def end_text(self) -> None:
        self._ops.append("ET")

    def set_font(self, size: int) -> None:
        if size != self._font_size:
            self._ops.append(f"/F1 {size} Tf")
            self._font_size = size

    def line(self, text: str, size: int, advance: int = 0) -> bool:
        """
        Move down by `advance` and show one line. Returns False (and marks the
        stream truncated) when the line would fall below the bottom margin.
        """
        if self.truncated:
            return False
        if not self._started:
            self.set_font(size)
            self._ops.append(f"{self.left} {self.y} Td")
            self._started = True
        else:
            if self.y - advance < self.bottom:
                self.truncated = True
                return False
            self.set_font(size)
            self._ops.append(f"0 -{advance} Td")
            self.y -= advance
        self._ops.append(f"({escape_pdf_text(text)}) Tj")
        return True

    @property
    def operators(self) -> List[str]:
        return list(self._ops)

    def to_bytes(self) -> bytes:
        return "\n".join(self._ops).encode(TEXT_ENCODING, errors="replace")


class PdfObjectTable:
    """
    Appends numbered indirect objects and records each start offset at append time.
    Object numbers are 1-based and contiguous.
    """

    def __init__(self, header: bytes = PDF_HEADER):
        self._chunks: List[bytes] = [header]
        self._offsets: List[int] = []
        self._position = len(header)

    @property
    def offsets(self) -> List[int]:
        return list(self._offsets)

    def add(self, body: bytes) -> int:
        number = len(self._offsets) + 1
        serialized = b"%d 0 obj\n" % number + body + b"\nendobj\n"
        self._offsets.append(self._position)
        self._chunks.append(serialized)
        self._position += len(serialized)
        return number

    def add_stream(self, data: bytes, extra_dict: bytes = b"") -> int:
        body = b"<< /Length %d%s >>\nstream\n" % (len(data), extra_dict) + data + b"\nendstream"
        return self.add(body)

    def serialize(self, root: int) -> bytes:
        xref_offset = self._position
        size = len(self._offsets) + 1
        xref = [b"xref\n", b"0 %d\n" % size, b"0000000000 65535 f \n"]
        for offset in self._offsets:
            xref.append(b"%010d 00000 n \n" % offset)
        trailer = b"trailer\n<< /Size %d /Root %d 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (size, root, xref_offset)
        return b"".join(self._chunks) + b"".join(xref) + trailer


@dataclass
class RawPdfLayout:
    """Content stream plus layout facts, exposed for callers that care about truncation."""
    stream: ContentStream
    lines_written: int = 0
    sections_written: int = 0
    warnings: List[str] = field(default_factory=list)


class RawPdfWriter:
    """Single-page document writer used for the classic rendering path."""

    def __init__(self, wrap_width: int = DEFAULT_WRAP_WIDTH):
        self.wrap_width = wrap_width

    def layout(self, title: str, subtitle: str, sections: Sequence[str]) -> RawPdfLayout:
        stream = ContentStream()
        result = RawPdfLayout(stream=stream)
        stream.begin_text()

        stream.line(title or "", TITLE_FONT_SIZE)
        result.lines_written += 1
        gap = TITLE_BLOCK_GAP
        if subtitle:
            stream.line(subtitle, SUBTITLE_FONT_SIZE, SUBTITLE_GAP)
            result.lines_written += 1

        for section in sections:
            if not section or not section.strip():
                continue
            header, body = split_section_header(section)
            if header:
                if not stream.line(f"{header}:", SECTION_HEADER_FONT_SIZE, gap):
                    break
                result.lines_written += 1
                gap = HEADER_TO_BODY_GAP
            for line in wrap_text(body, self.wrap_width):
                if not stream.line(line, BODY_FONT_SIZE, gap):
                    break
                result.lines_written += 1
                gap = BODY_LEADING
            if stream.truncated:
                break
            result.sections_written += 1
            gap = SECTION_GAP

        stream.end_text()
        if stream.truncated:
            result.warnings.append("content truncated at bottom of page")
            logger.warning(
                f"Raw PDF content truncated after {result.sections_written} section(s) for '{title}'"
            )
        return result

    def write(self, title: str, subtitle: str, sections: Iterable[str]) -> bytes:
        layout = self.layout(title, subtitle, list(sections))
        content = layout.stream.to_bytes()

        table = PdfObjectTable()
        catalog = table.add(b"<< /Type /Catalog /Pages 2 0 R >>")
        table.add(b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>")
        table.add(
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 %d %d] "
            b"/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>" % (PAGE_WIDTH, PAGE_HEIGHT)
        )
        table.add(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>")
        table.add_stream(content)
        return table.serialize(root=catalog)


raw_pdf_writer = RawPdfWriter()


def write_pdf(title: str, subtitle: str, sections: Iterable[str]) -> bytes:
    return raw_pdf_writer.write(title, subtitle, sections)
