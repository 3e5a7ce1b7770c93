from flask import Blueprint, current_app, request

from study_assistant.extensions import get_app_context
from study_assistant.services import youtube_api_service

youtube_bp = Blueprint('youtube_api', __name__)


@youtube_bp.route('/api/youtube', methods=['POST'])
def submit_youtube_video():
    return youtube_api_service.submit_youtube_video(get_app_context(current_app), request)
