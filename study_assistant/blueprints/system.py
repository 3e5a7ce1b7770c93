from flask import Blueprint, current_app, request

from study_assistant.extensions import get_app_context
from study_assistant.services import system_api_service

system_bp = Blueprint('system_api', __name__)


@system_bp.route('/healthz')
def healthz():
    return system_api_service.healthz(get_app_context(current_app), request)


@system_bp.route('/api/model-status')
def model_status():
    return system_api_service.model_status(get_app_context(current_app), request)


@system_bp.route('/api/jobs/<job_id>')
def job_status(job_id):
    return system_api_service.job_status(get_app_context(current_app), request, job_id)
