"""
Document Routes
Processor registry, validation, saving, cache lookups, identification of
unknown documents and linking documents to import processes
"""
import logging
from flask import Blueprint, request, jsonify
from pydantic import ValidationError
from werkzeug.utils import secure_filename
from importflow.document_prompts import map_identified_type
from importflow.models.imports import ConnectProcessRequest
from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.azure_blob import AzureBlobService, get_blob_service
from importflow.services.document_cache import DocumentCacheService
from importflow.services.document_processors import (
    get_all_type_infos,
    get_processor,
    get_statistics,
    get_supported_types,
    has_processor,
    validate_structure,
)
from importflow.services.document_save import DocumentSaveService
from importflow.services.llm_client import get_llm_service
from importflow.services.multi_prompt import extract_single_prompt
from importflow.services.nocodb import get_nocodb_service
from importflow.services.ocr_upload import OCRUploadService, UploadValidationError
from importflow.services.process_documents import ProcessDocumentService
from importflow.users import get_current_user

logger = logging.getLogger('importflow.documents')

bp = Blueprint('documents', __name__, url_prefix='/api/documents')

CACHEABLE_TYPES = {'di', 'commercial_invoice', 'packing_list', 'proforma_invoice', 'swift', 'numerario'}
MIN_HASH_LENGTH = 32


def _validation_error(e: ValidationError):
    return jsonify({'error': 'Invalid request', 'details': e.errors(include_url=False)}), 400


@bp.route('/types', methods=['GET'])
def list_types():
    """Supported document types; ?format=full adds processor details"""
    if request.args.get('format', 'simple') == 'full':
        return jsonify({
            'success': True,
            'types': get_all_type_infos(),
            'statistics': get_statistics(),
        }), 200
    return jsonify({'success': True, 'types': get_supported_types()}), 200


@bp.route('/health', methods=['GET'])
def registry_health():
    problems = []
    for document_type in get_supported_types():
        try:
            if not get_processor(document_type).get_steps():
                problems.append(f'{document_type}: no prompt steps')
        except Exception as e:
            problems.append(f'{document_type}: {e}')

    healthy = not problems
    return jsonify({
        'status': 'healthy' if healthy else 'degraded',
        'statistics': get_statistics(),
        'problems': problems,
    }), 200 if healthy else 503


@bp.route('/<document_type>/prompts', methods=['GET'])
def get_prompts(document_type):
    """All prompt steps, or ?step=N (with optional previousResult) for one"""
    if not has_processor(document_type):
        return jsonify({'error': f'Unsupported document type: {document_type}'}), 404

    processor = get_processor(document_type)
    step = request.args.get('step')
    if step is None:
        return jsonify({
            'documentType': document_type,
            'hasMultiStep': processor.has_multi_step,
            'steps': processor.get_steps(),
        }), 200

    try:
        prompt = processor.get_prompt_for_step(int(step), request.args.get('previousResult'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'documentType': document_type, 'step': int(step), 'prompt': prompt}), 200


@bp.route('/<document_type>/validate', methods=['POST'])
def validate(document_type):
    if not has_processor(document_type):
        return jsonify({'error': f'Unsupported document type: {document_type}'}), 404

    body = request.get_json(silent=True)
    if not body or 'data' not in body:
        return jsonify({'error': 'data required'}), 400

    return jsonify({
        'documentType': document_type,
        'validation': get_processor(document_type).validate(body['data']),
    }), 200


@bp.route('/process', methods=['POST'])
def process_document():
    """
    Check an extraction result before it is saved

    Expects JSON body:
    {
        "documentType": "proforma_invoice",
        "extractedData": {...structuredResult...},
        "fileHash": "sha256"
    }
    """
    body = request.get_json(silent=True)
    if not body:
        return jsonify({'error': 'No JSON data provided'}), 400

    document_type = body.get('documentType')
    extracted = body.get('extractedData')
    if not document_type or extracted is None:
        return jsonify({'error': 'documentType and extractedData required'}), 400
    if not has_processor(document_type):
        return jsonify({'error': f'Unsupported document type: {document_type}'}), 400

    problems = validate_structure(document_type, extracted)
    if problems:
        return jsonify({'success': False, 'error': 'Invalid document structure', 'details': problems}), 400

    return jsonify({
        'success': True,
        'documentType': document_type,
        'fileHash': body.get('fileHash'),
        'readyToSave': extracted,
        'validation': get_processor(document_type).validate(extracted),
    }), 200


@bp.route('/save', methods=['POST'])
def save_document():
    """
    Persist a reviewed document

    Expects JSON body:
    {
        "documentType": "proforma_invoice",
        "data": {...structuredResult...},
        "fileHash": "sha256",
        "processId": 12          (optional)
    }
    """
    body = request.get_json(silent=True)
    if not body:
        return jsonify({'error': 'No JSON data provided'}), 400

    document_type = body.get('documentType')
    data = body.get('data')
    file_hash = body.get('fileHash')
    if not document_type or not data or not file_hash:
        return jsonify({'error': 'documentType, data and fileHash required'}), 400

    try:
        service = DocumentSaveService(get_nocodb_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        result = service.save_document(
            document_type,
            data,
            file_hash,
            get_current_user()['id'],
            body.get('processId')
        )
        return jsonify(result), 200
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Save failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/cache/<file_hash>', methods=['GET'])
def get_cached_document(file_hash):
    """Rebuilt structuredResult of an already processed file"""
    if len(file_hash) < MIN_HASH_LENGTH:
        return jsonify({'error': 'Invalid file hash'}), 400

    document_type = request.args.get('type')
    if document_type and document_type not in CACHEABLE_TYPES:
        return jsonify({'error': f'Invalid document type: {document_type}'}), 400

    try:
        cache = DocumentCacheService(get_nocodb_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        cached = cache.get_document_data(file_hash, document_type)
        if not cached:
            return jsonify({'error': 'Document not found'}), 404

        upload = cached['upload']
        if not cached['isComplete'] or not cached['structuredResult']:
            return jsonify({
                'success': False,
                'isComplete': False,
                'status': upload.get('statusProcessamento'),
                'message': 'Documento ainda não foi processado completamente',
            }), 200

        response = jsonify({
            'success': True,
            'isComplete': True,
            'documentType': cached['documentType'],
            'fileHash': file_hash,
            'uploadId': upload.get('Id'),
            'documentId': upload.get('idDocumento'),
            'structuredResult': cached['structuredResult'],
        })
        response.headers['Cache-Control'] = 'private, max-age=300'
        return response, 200

    except Exception as e:
        logger.error(f"Cache lookup failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


def _process_info(documents: ProcessDocumentService, file_hash: str) -> dict:
    processes = []
    for relation in documents.get_document_processes(file_hash):
        process = documents.nocodb.find_one(documents.processes_table, relation.get('processo_importacao'))
        if process:
            processes.append({
                'id': process.get('Id'),
                'numeroProcesso': process.get('numero_processo'),
                'empresa': process.get('empresa'),
                'invoice': process.get('invoiceNumber'),
                'status': process.get('status'),
            })
    return {'connected': bool(processes), 'processCount': len(processes), 'processes': processes}


@bp.route('/check-existing', methods=['POST'])
def check_existing():
    """Whether a file (multipart 'file') was uploaded before, and where it is linked"""
    if 'file' not in request.files:
        return jsonify({'error': 'No file provided'}), 400

    try:
        nocodb = get_nocodb_service()
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        file = request.files['file']
        file_hash = AzureBlobService.generate_file_hash(file.read())
        cache = DocumentCacheService(nocodb)
        upload = cache.check_existing_document(file_hash)
        if not upload:
            # Same name, different content: an edited copy of a processed document
            same_name = cache.find_by_original_name(secure_filename(file.filename or ''))
            return jsonify({
                'exists': False,
                'fileHash': file_hash,
                'sameNameUpload': {
                    'id': same_name.get('Id'),
                    'fileHash': same_name.get('hashArquivo'),
                    'documentType': same_name.get('tipoDocumento'),
                } if same_name else None,
            }), 200

        document_type = upload.get('tipoDocumento')
        return jsonify({
            'exists': True,
            'fileHash': file_hash,
            'uploadRecord': {
                'id': upload.get('Id'),
                'status': upload.get('statusProcessamento'),
                'documentType': document_type,
                'documentId': upload.get('idDocumento'),
                'uploadedAt': upload.get('dataUpload'),
                'isSaved': bool(document_type) and cache.is_document_saved(file_hash, document_type),
            },
            'processInfo': _process_info(ProcessDocumentService(nocodb), file_hash),
        }), 200

    except Exception as e:
        logger.error(f"Check existing failed: {e}")
        return jsonify({'error': str(e)}), 500


@bp.route('/identify', methods=['POST'])
def identify_document():
    """
    Upload an unknown document and ask the LLM what it is

    Returns:
        uploadData, identification (tipo, mappedType, document_number, ...)
        and nextStep telling the client whether to run a typed extraction
    """
    if 'file' not in request.files:
        return jsonify({'error': 'No file provided'}), 400

    file = request.files['file']
    if file.filename == '':
        return jsonify({'error': 'No file selected'}), 400

    llm = get_llm_service()
    if not llm:
        return jsonify({'error': 'LLM service not available'}), 503

    try:
        nocodb = get_nocodb_service()
        upload_service = OCRUploadService(get_blob_service(), nocodb)
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        logger.info("=" * 60)
        logger.info("🔎 DOCUMENT IDENTIFICATION")
        logger.info("=" * 60)

        file_bytes = file.read()
        filename = secure_filename(file.filename) or 'document.pdf'
        upload = upload_service.upload(file_bytes, filename, file.content_type, 'unknown', get_current_user())

        single = extract_single_prompt(file_bytes, 'unknown', llm, filename)
        identified = single['extractedData'] if isinstance(single['extractedData'], dict) else {}
        mapped_type = map_identified_type(identified.get('tipo'))
        should_process = mapped_type not in ('unknown', 'other')

        if should_process and upload.get('uploadId'):
            try:
                nocodb.update(NOCODB_TABLES['DOCUMENT_UPLOADS'], upload['uploadId'], {'tipoDocumento': mapped_type})
            except Exception as e:
                logger.warning(f"Could not store identified type: {e}")

        logger.info(f"✅ Identified as {identified.get('tipo')} -> {mapped_type}")

        return jsonify({
            'success': True,
            'uploadData': {
                'storagePath': upload['storagePath'],
                'fileHash': upload['fileHash'],
                'originalFileName': file.filename,
                'fromCache': upload['fromCache'],
            },
            'identification': {
                'tipo': identified.get('tipo'),
                'mappedType': mapped_type,
                'document_number': identified.get('document_number'),
                'has_invoice_number': bool(identified.get('has_invoice_number')),
                'resumo': identified.get('resumo'),
                'data': identified.get('data'),
                'proximo_modulo': identified.get('proximo_modulo'),
            },
            'nextStep': {
                'shouldProcess': should_process,
                'documentType': mapped_type,
                'message': (
                    f'Documento identificado como {mapped_type}. Prossiga com a extração.'
                    if should_process else
                    'Tipo de documento não reconhecido. Classificação manual necessária.'
                ),
            },
        }), 200

    except UploadValidationError as e:
        return jsonify({'error': str(e)}), 400
    except ValueError as e:
        return jsonify({'error': str(e)}), 503
    except Exception as e:
        logger.error(f"Identification failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/connect-process', methods=['POST'])
def connect_process():
    """
    Link a saved document to a process and record it in documentsPipeline

    Expects JSON body:
    {
        "processId": 12,
        "documentType": "proforma_invoice",
        "fileHash": "sha256",
        "documentId": "PI-2024-001",   (optional)
        "metadata": {...}              (optional)
    }
    """
    try:
        body = ConnectProcessRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    try:
        documents = ProcessDocumentService(get_nocodb_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        process = documents.nocodb.find_one(documents.processes_table, body.process_id)
        if not process:
            return jsonify({'success': False, 'error': 'Processo não encontrado'}), 404

        metadata = {
            **body.metadata,
            'documentType': body.document_type,
            'documentId': body.document_id if body.document_id is not None else body.metadata.get('documentId'),
        }
        result = documents.link_document_with_metadata(process['numero_processo'], body.file_hash, metadata)
        return jsonify({
            'success': True,
            'processId': result['processId'],
            'relationId': (result['relation'] or {}).get('Id'),
            'pipelineEntry': result['pipelineEntry'],
            'message': 'Documento conectado ao processo com sucesso',
        }), 200

    except LookupError as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Connect process failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/connect-process', methods=['GET'])
def connection_status():
    """?fileHash=&processId= -> whether the document is linked"""
    file_hash = request.args.get('fileHash')
    if not file_hash:
        return jsonify({'error': 'fileHash required'}), 400

    try:
        documents = ProcessDocumentService(get_nocodb_service())
    except ValueError as e:
        return jsonify({'error': str(e)}), 503

    try:
        process_id = request.args.get('processId')
        if process_id:
            linked = documents.is_document_linked_to_process(process_id, file_hash)
            return jsonify({'isLinked': linked, 'processId': process_id if linked else None}), 200

        process = documents.find_process_by_document(file_hash)
        return jsonify({'isLinked': process is not None, 'processId': process.get('Id') if process else None}), 200

    except Exception as e:
        logger.error(f"Connection status failed: {e}")
        return jsonify({'error': str(e)}), 500
