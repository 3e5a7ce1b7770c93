from flask import Blueprint, current_app, request

from study_assistant.extensions import get_app_context
from study_assistant.services import qa_api_service

qa_bp = Blueprint('qa_api', __name__)


@qa_bp.route('/api/qa', methods=['POST'])
def ask_question():
    return qa_api_service.ask_question(get_app_context(current_app), request)
