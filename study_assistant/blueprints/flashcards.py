from flask import Blueprint, current_app, request

from study_assistant.extensions import get_app_context
from study_assistant.services import flashcard_api_service

flashcards_bp = Blueprint('flashcards_api', __name__)


@flashcards_bp.route('/api/flashcards/<flashcard_id>/verify-answer', methods=['POST'])
def verify_flashcard_answer(flashcard_id):
    return flashcard_api_service.verify_flashcard_answer(get_app_context(current_app), request, flashcard_id)
