from flask import Blueprint, current_app, request

from study_assistant.extensions import get_app_context
from study_assistant.services import document_api_service

documents_bp = Blueprint('documents_api', __name__)


@documents_bp.route('/api/documents', methods=['POST'])
def upload_document():
    return document_api_service.upload_document(get_app_context(current_app), request)


@documents_bp.route('/api/documents', methods=['GET'])
def list_documents():
    return document_api_service.list_documents(get_app_context(current_app), request)


@documents_bp.route('/api/documents/<document_id>', methods=['GET'])
def get_document(document_id):
    return document_api_service.get_document(get_app_context(current_app), request, document_id)


@documents_bp.route('/api/documents/<document_id>', methods=['DELETE'])
def delete_document(document_id):
    return document_api_service.delete_document(get_app_context(current_app), request, document_id)


@documents_bp.route('/api/documents/<document_id>', methods=['PATCH'])
def rename_document(document_id):
    return document_api_service.rename_document(get_app_context(current_app), request, document_id)


@documents_bp.route('/api/documents/<document_id>/regenerate-quiz', methods=['POST'])
def regenerate_quiz(document_id):
    return document_api_service.regenerate_quiz(get_app_context(current_app), request, document_id)


@documents_bp.route('/api/documents/<document_id>/notes/export', methods=['GET'])
def export_notes(document_id):
    return document_api_service.export_notes(get_app_context(current_app), request, document_id)
