"""
OCR Routes
Document upload to blob storage and LLM extraction (sync or polled)
"""
import logging
from flask import Blueprint, request, jsonify
from werkzeug.utils import secure_filename
from importflow.services.azure_blob import get_blob_service
from importflow.services.nocodb import get_nocodb_service
from importflow.services.ocr_extraction import ExtractionValidationError, get_ocr_extraction_service
from importflow.services.ocr_upload import OCRUploadService, UploadValidationError
from importflow.users import get_current_user

logger = logging.getLogger('importflow.ocr')

bp = Blueprint('ocr', __name__, url_prefix='/api/ocr')

_STATUS_CODES = {
    'not_found': 404,
    'completed': 200,
    'processing': 202,
    'failed': 500,
}


@bp.route('/upload', methods=['POST'])
def upload_document():
    """
    Upload a PDF for extraction

    Expects multipart form:
        file: the PDF
        documentType: internal document type

    Returns:
        JSON with storagePath, fileHash, uploadId and, for documents already
        processed, the cached structuredResult
    """
    if 'file' not in request.files:
        logger.warning("Upload request missing file")
        return jsonify({'error': 'No file provided'}), 400

    file = request.files['file']
    if file.filename == '':
        logger.warning("Upload request with empty filename")
        return jsonify({'error': 'No file selected'}), 400

    document_type = request.form.get('documentType')
    if not document_type:
        return jsonify({'error': 'documentType required'}), 400

    try:
        service = OCRUploadService(get_blob_service(), get_nocodb_service())
    except ValueError as e:
        logger.error(f"Upload service unavailable: {e}")
        return jsonify({'error': str(e)}), 503

    try:
        logger.info("=" * 60)
        logger.info("📤 UPLOAD TO AZURE STORAGE")
        logger.info("=" * 60)

        filename = secure_filename(file.filename) or 'document.pdf'
        result = service.upload(
            file.read(),
            filename,
            file.content_type,
            document_type,
            get_current_user()
        )
        return jsonify(result), 200

    except UploadValidationError as e:
        return jsonify({'error': str(e)}), 400
    except ValueError as e:
        logger.error(f"Upload service unavailable: {e}")
        return jsonify({'error': str(e)}), 503
    except Exception as e:
        logger.error(f"Upload failed: {e}")
        return jsonify({'error': str(e)}), 500


@bp.route('/extract-multi', methods=['POST'])
def extract_multi():
    """
    Run the extraction prompts for an uploaded document

    Expects JSON body:
    {
        "storagePath": "user/123-abc.pdf",
        "fileType": ".pdf",
        "documentType": "proforma_invoice"
    }

    Returns:
        200 with the extraction result, or 202 with a requestId to poll
        for large files
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No JSON data provided'}), 400

    service = get_ocr_extraction_service()
    if not service:
        return jsonify({'error': 'OCR extraction service not available'}), 503

    try:
        result = service.start_extraction(
            data.get('storagePath'),
            data.get('fileType'),
            data.get('documentType'),
            get_current_user()['id']
        )
        if result.get('status') == 'processing':
            return jsonify(result), 202
        return jsonify({'success': True, 'data': result}), 200

    except ExtractionValidationError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Extraction failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/extract-multi/status', methods=['GET'])
def extraction_status():
    """Poll a long-running extraction by requestId"""
    request_id = request.args.get('requestId')
    if not request_id:
        return jsonify({'error': 'requestId required'}), 400

    service = get_ocr_extraction_service()
    if not service:
        return jsonify({'error': 'OCR extraction service not available'}), 503

    status = service.check_status(request_id)
    if status['status'] == 'completed':
        body = {'status': 'completed', 'success': True, 'data': status['result']}
    else:
        body = dict(status)
    return jsonify(body), _STATUS_CODES[status['status']]
