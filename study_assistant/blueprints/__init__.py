from .documents import documents_bp
from .flashcards import flashcards_bp
from .qa import qa_bp
from .system import system_bp
from .youtube import youtube_bp

__all__ = ['documents_bp', 'flashcards_bp', 'qa_bp', 'system_bp', 'youtube_bp']
