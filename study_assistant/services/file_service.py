"""Upload validation and text extraction helpers."""

import io
import re
import zipfile
from urllib.parse import parse_qs, urlparse

from docx import Document as DocxDocument
from pypdf import PdfReader
from werkzeug.utils import secure_filename

from study_assistant.errors import TextExtractionError

ALLOWED_DOCUMENT_EXTENSIONS = {'pdf', 'docx'}
DOCUMENT_MIME_TYPES = {
    'pdf': 'application/pdf',
    'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
}
TRUNCATION_MARKER = '...'
YOUTUBE_HOSTS = {'youtube.com', 'www.youtube.com', 'm.youtube.com', 'youtu.be', 'www.youtu.be'}
YOUTUBE_VIDEO_ID_RE = re.compile(r'^[A-Za-z0-9_-]{11}$')
YOUTUBE_MAX_URL_LENGTH = 2048


def allowed_file(filename, allowed_extensions):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed_extensions


def file_extension(filename):
    parts = str(filename or '').rsplit('.', 1)
    return parts[1].lower() if len(parts) > 1 else ''


def has_pdf_signature(data):
    return bytes(data[:5]) == b'%PDF-'


def has_docx_signature(data):
    if bytes(data[:4]) != b'PK\x03\x04':
        return False
    try:
        with zipfile.ZipFile(io.BytesIO(data), 'r') as archive:
            members = set(archive.namelist())
    except zipfile.BadZipFile:
        return False
    return '[Content_Types].xml' in members and 'word/document.xml' in members


def read_uploaded_document(uploaded_file, *, max_upload_bytes):
    """Validate a werkzeug upload and return ``(payload, error_message)``.

    ``payload`` holds the raw bytes plus the declared file type; it is ``None``
    whenever ``error_message`` is set.
    """
    if not uploaded_file or not uploaded_file.filename:
        return None, 'No file provided'
    if not allowed_file(uploaded_file.filename, ALLOWED_DOCUMENT_EXTENSIONS):
        return None, 'Invalid file type. Only PDF and DOCX files are supported.'
    file_type = file_extension(uploaded_file.filename)
    data = uploaded_file.read(max_upload_bytes + 1)
    if not data:
        return None, 'Uploaded file is empty.'
    if len(data) > max_upload_bytes:
        limit_mb = max_upload_bytes // (1024 * 1024)
        return None, f'File is too large. Maximum size is {limit_mb}MB.'
    if file_type == 'pdf' and not has_pdf_signature(data):
        return None, 'Uploaded PDF file is invalid.'
    if file_type == 'docx' and not has_docx_signature(data):
        return None, 'Uploaded DOCX file is invalid.'
    return {
        'data': data,
        'file_type': file_type,
        'file_name': secure_filename(uploaded_file.filename) or f'document.{file_type}',
        'original_name': uploaded_file.filename,
        'file_size': len(data),
        'content_type': DOCUMENT_MIME_TYPES[file_type],
    }, ''


def extract_pdf_text(data):
    reader = PdfReader(io.BytesIO(data))
    parts = []
    for page in reader.pages:
        page_text = page.extract_text() or ''
        if page_text.strip():
            parts.append(page_text)
    return '\n'.join(parts)


def extract_docx_text(data):
    doc = DocxDocument(io.BytesIO(data))
    parts = [paragraph.text for paragraph in doc.paragraphs if paragraph.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(' | '.join(cells))
    return '\n'.join(parts)


def extract_text(data, file_type):
    if file_type == 'pdf':
        extractor = extract_pdf_text
    elif file_type == 'docx':
        extractor = extract_docx_text
    else:
        raise TextExtractionError(f'Unsupported file type for text extraction: {file_type}')
    try:
        return extractor(data)
    except TextExtractionError:
        raise
    except Exception as exc:
        raise TextExtractionError(context={'file_type': file_type, 'reason': str(exc)[:200]}) from exc


def truncate_source_text(text, max_chars):
    """Cap text at ``max_chars`` and append a visible marker when cut."""
    text = str(text or '')
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars] + TRUNCATION_MARKER, True


def prepare_source_text(data, file_type, max_chars):
    extracted = extract_text(data, file_type)
    if not extracted or not extracted.strip():
        raise TextExtractionError(context={'file_type': file_type})
    return truncate_source_text(extracted, max_chars)


def parse_youtube_video_id(raw_url):
    try:
        parsed = urlparse(str(raw_url or '').strip())
    except ValueError:
        return ''
    host = (parsed.hostname or '').lower()
    if host not in YOUTUBE_HOSTS:
        return ''
    candidate = ''
    if host.endswith('youtu.be'):
        candidate = parsed.path.lstrip('/').split('/', 1)[0]
    elif parsed.path == '/watch':
        candidate = (parse_qs(parsed.query).get('v') or [''])[0]
    else:
        for prefix in ('/embed/', '/shorts/', '/live/', '/v/'):
            if parsed.path.startswith(prefix):
                candidate = parsed.path[len(prefix):].split('/', 1)[0]
                break
    return candidate if YOUTUBE_VIDEO_ID_RE.match(candidate or '') else ''


def validate_youtube_url(raw_url):
    """Return ``(canonical_url, video_id, error_message)``."""
    url = str(raw_url or '').strip()
    if not url:
        return '', '', 'Please paste a YouTube URL.'
    if len(url) > YOUTUBE_MAX_URL_LENGTH:
        return '', '', 'YouTube URL is too long.'
    try:
        parsed = urlparse(url)
    except ValueError:
        return '', '', 'YouTube URL is invalid.'
    if parsed.scheme.lower() not in {'https', 'http'}:
        return '', '', 'Only HTTP(S) YouTube URLs are supported.'
    if parsed.username or parsed.password:
        return '', '', 'YouTube URL credentials are not allowed.'
    video_id = parse_youtube_video_id(url)
    if not video_id:
        return '', '', 'Could not find a YouTube video id in that URL.'
    return f'https://www.youtube.com/watch?v={video_id}', video_id, ''
