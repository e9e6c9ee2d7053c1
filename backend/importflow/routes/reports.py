"""
Report Routes
Document comparison reports, as JSON or CSV downloads
"""
import logging
from flask import Blueprint, Response, request, jsonify
from pydantic import ValidationError
from importflow.models.imports import CompareRequest
from importflow.services.comparison import COMPARISON_TYPES, ComparisonService
from importflow.services.llm_client import get_llm_service
from importflow.services.nocodb import get_nocodb_service

logger = logging.getLogger('importflow.reports')

bp = Blueprint('reports', __name__, url_prefix='/api/reports')


@bp.route('/compare', methods=['GET'])
def comparison_types():
    return jsonify({'comparisonTypes': COMPARISON_TYPES}), 200


@bp.route('/compare', methods=['POST'])
def compare_documents():
    """
    Compare the documents attached to a process

    Expects JSON body:
    {
        "processId": 12,
        "comparisonType": "proforma_vs_commercial",
        "exportFormat": "json" | "csv",
        "includeDetails": true
    }
    """
    try:
        body = CompareRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify({'error': 'Invalid request', 'details': e.errors(include_url=False)}), 400

    try:
        service = ComparisonService(get_nocodb_service(), get_llm_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        result = service.compare(body.process_id, body.comparison_type, body.include_details)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Comparison failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    if body.export_format == 'csv':
        filename = f'comparison_{body.process_id}_{body.comparison_type}.csv'
        return Response(
            ComparisonService.to_csv(result),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename="{filename}"'}
        )

    return jsonify({'success': True, 'data': result}), 200
