"""
Analysis Routes
Match extracted documents to existing import processes
"""
import logging
from flask import Blueprint, request, jsonify
from pydantic import ValidationError
from importflow.models.imports import FindProcessRequest
from importflow.services.llm_client import get_llm_service
from importflow.services.nocodb import get_nocodb_service
from importflow.services.process_service import ProcessService

logger = logging.getLogger('importflow.analysis')

bp = Blueprint('analysis', __name__, url_prefix='/api/analysis')


@bp.route('/find-process', methods=['POST'])
def find_process():
    """
    Find the processes a document belongs to

    Expects JSON body:
    {
        "documentData": {
            "invoiceNumber": "INV-001",
            "companyName": "ACME",
            "amount": 1000.0,
            ...
        },
        "searchMode": "strict" | "fuzzy" | "ai"
    }
    """
    try:
        body = FindProcessRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify({'error': 'Invalid request', 'details': e.errors(include_url=False)}), 400

    llm = get_llm_service() if body.search_mode == 'ai' else None
    try:
        service = ProcessService(get_nocodb_service(), llm)
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        logger.info(f"🔎 Finding processes ({body.search_mode})")
        document_data = body.document_data.model_dump(by_alias=True, exclude_none=True)
        result = service.find_matching_processes(document_data, body.search_mode)
        return jsonify({'success': True, **result}), 200
    except Exception as e:
        logger.error(f"Error finding process: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/find-process', methods=['GET'])
def find_process_by_invoice():
    """?invoiceNumber= exact lookup"""
    invoice_number = request.args.get('invoiceNumber')
    if not invoice_number:
        return jsonify({'error': 'invoiceNumber required'}), 400

    try:
        service = ProcessService(get_nocodb_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        result = service.find_matching_processes({'invoiceNumber': invoice_number}, 'strict')
        return jsonify({'success': True, **result}), 200
    except Exception as e:
        logger.error(f"Error finding process by invoice: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500
