"""Render generated markdown notes as downloadable files."""

import io
import re

from docx import Document
from docx.shared import Pt

DOCX_MIME_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
MARKDOWN_MIME_TYPE = 'text/markdown; charset=utf-8'
EXPORT_FORMATS = {'md', 'docx'}

INLINE_EMPHASIS_RE = re.compile(r'(\*\*.+?\*\*|__.+?__|\*.+?\*|_.+?_)')
NUMBERED_ITEM_RE = re.compile(r'^\d+\.\s+(.*)$')


def add_inline_markdown_runs(paragraph, text):
    for part in INLINE_EMPHASIS_RE.split(str(text or '')):
        if not part:
            continue
        if len(part) >= 4 and part[:2] in ('**', '__') and part[-2:] == part[:2]:
            paragraph.add_run(part[2:-2]).bold = True
            continue
        if len(part) >= 3 and part[0] in ('*', '_') and part[-1] == part[0]:
            paragraph.add_run(part[1:-1]).italic = True
            continue
        paragraph.add_run(part.replace('**', '').replace('__', ''))


def _starts_block(line):
    return line.startswith('#') or line.startswith('- ') or line.startswith('* ') or bool(NUMBERED_ITEM_RE.match(line))


def markdown_to_docx(markdown_text, title='Study Notes'):
    doc = Document()
    style = doc.styles['Normal']
    style.font.name = 'Calibri'
    style.font.size = Pt(11)
    lines = str(markdown_text or '').split('\n')
    if not any(line.strip().startswith('# ') for line in lines[:5]):
        doc.add_heading(title, level=1)

    i = 0
    while i < len(lines):
        line = lines[i].strip()
        if not line:
            i += 1
            continue
        numbered = NUMBERED_ITEM_RE.match(line)
        if line.startswith('### '):
            doc.add_heading(line[4:], level=3)
        elif line.startswith('## '):
            doc.add_heading(line[3:], level=2)
        elif line.startswith('# '):
            doc.add_heading(line[2:], level=1)
        elif line.startswith('- ') or line.startswith('* '):
            add_inline_markdown_runs(doc.add_paragraph(style='List Bullet'), line[2:])
        elif numbered:
            add_inline_markdown_runs(doc.add_paragraph(style='List Number'), numbered.group(1))
        else:
            # consecutive plain lines form one paragraph
            paragraph_lines = [line]
            while i + 1 < len(lines) and lines[i + 1].strip() and not _starts_block(lines[i + 1].strip()):
                paragraph_lines.append(lines[i + 1].strip())
                i += 1
            add_inline_markdown_runs(doc.add_paragraph(), ' '.join(paragraph_lines))
        i += 1
    return doc


def export_filename(base_name, export_format):
    stem = re.sub(r'[^A-Za-z0-9_.-]+', '-', str(base_name or '').rsplit('.', 1)[0]).strip('-.') or 'study-notes'
    return f"{stem[:80]}-notes.{export_format}"


def render_notes(notes, export_format, base_name=''):
    """Return ``(bytes_io, mimetype, download_name)`` for the notes artifact."""
    content = str(notes.get('content', '') or '')
    title = notes.get('title') or 'Study Notes'
    download_name = export_filename(base_name or title, export_format)
    if export_format == 'docx':
        buffer = io.BytesIO()
        markdown_to_docx(content, title).save(buffer)
        buffer.seek(0)
        return buffer, DOCX_MIME_TYPE, download_name
    return io.BytesIO(content.encode('utf-8')), MARKDOWN_MIME_TYPE, download_name
