"""
Import Process Routes
Listing, creation, deletion, Kanban stage changes, audit logs and the
documents attached to each processo de importação
"""
import logging
from typing import Optional
from flask import Blueprint, request, jsonify
from pydantic import ValidationError
from importflow.models.imports import AuditLogRequest, CreateSimpleRequest, StageChangeRequest
from importflow.services.nocodb import NocoDBError, get_nocodb_service
from importflow.services.process_service import ProcessNotFound, ProcessService, StageTransitionBlocked
from importflow.users import get_current_user

logger = logging.getLogger('importflow.processes')

bp = Blueprint('processo_importacao', __name__, url_prefix='/api/processo-importacao')

SERVICE_UNAVAILABLE = 'NocoDB not configured'


def _get_process_service() -> Optional[ProcessService]:
    try:
        return ProcessService(get_nocodb_service())
    except ValueError as e:
        logger.error(f"Process service unavailable: {e}")
        return None


def _unavailable():
    return jsonify({'error': SERVICE_UNAVAILABLE}), 503


def _validation_error(e: ValidationError):
    return jsonify({'error': 'Invalid request', 'details': e.errors(include_url=False)}), 400


def _is_constraint_error(error: Exception) -> bool:
    message = str(error).lower()
    return 'constraint' in message or 'foreign key' in message


@bp.route('/list', methods=['GET'])
def list_processes():
    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        processes = service.list_processes()
        logger.info(f"Found {len(processes)} processes")
        return jsonify({'success': True, 'processes': processes, 'total': len(processes)}), 200
    except Exception as e:
        logger.error(f"Error listing processes: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/list-all', methods=['GET'])
def list_open_processes():
    """Active processes, for documents without an invoice number (BL, câmbio)"""
    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        processes = [{
            'id': p.get('Id'),
            'numero_processo': p.get('numero_processo'),
            'empresa': p.get('empresa'),
            'invoice': p.get('invoiceNumber'),
            'status': p.get('status'),
            'data_inicio': p.get('data_inicio'),
            'descricao': p.get('descricao'),
            'responsavel': p.get('responsavel'),
        } for p in service.list_open_processes()]
        return jsonify({'success': True, 'processes': processes, 'total': len(processes)}), 200
    except Exception as e:
        logger.error(f"Error listing active processes: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/search', methods=['POST'])
def search_processes():
    """Processes with an exact invoiceNumber"""
    body = request.get_json(silent=True) or {}
    invoice_number = body.get('invoiceNumber')
    if not invoice_number:
        return jsonify({'success': True, 'processes': [], 'message': 'Número da invoice não fornecido'}), 200

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        processes = [{
            'id': p.get('Id'),
            'numero_processo': p.get('numero_processo'),
            'empresa': p.get('empresa'),
            'invoice': p.get('invoiceNumber'),
            'status': p.get('status'),
            'data_inicio': p.get('data_inicio'),
        } for p in service.search_by_invoice(invoice_number)]
        logger.info(f"🔍 Found {len(processes)} processes for invoice {invoice_number}")
        return jsonify({'success': True, 'processes': processes, 'searchedInvoice': invoice_number}), 200
    except Exception as e:
        logger.error(f"Error searching processes: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/check', methods=['POST'])
def check_process():
    body = request.get_json(silent=True)
    if not body:
        return jsonify({'error': 'Empty request body'}), 400
    process_id = body.get('processId')
    if not process_id:
        return jsonify({'error': 'processId required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        return jsonify({'success': True, **service.check_process(process_id)}), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error checking process {process_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/create-simple', methods=['POST'])
def create_simple():
    """
    Create IMP-<invoiceNumber> (or reuse it) and link the uploaded file

    Expects JSON body:
    {
        "invoiceNumber": "INV-001",
        "fileHash": "sha256"     (optional)
    }
    """
    try:
        body = CreateSimpleRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.create_simple(body.invoice_number, body.file_hash, get_current_user())
        message = 'Processo criado com sucesso' if result['isNew'] else 'Processo existente reutilizado'
        return jsonify({'success': True, 'message': message, **result}), 200
    except Exception as e:
        logger.error(f"Error creating process: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/delete', methods=['POST'])
def delete_process():
    body = request.get_json(silent=True) or {}
    process_id = body.get('processId')
    if not process_id:
        return jsonify({'error': 'processId required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.delete_process(process_id, get_current_user())
        return jsonify({'success': True, 'message': 'Processo excluído com sucesso', **result}), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except NocoDBError as e:
        if _is_constraint_error(e):
            return jsonify({
                'success': False,
                'error': 'Processo possui registros dependentes e não pode ser excluído',
                'details': str(e),
            }), 409
        logger.error(f"Error deleting process {process_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500
    except Exception as e:
        logger.error(f"Error deleting process {process_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/update-stage', methods=['GET'])
def stage_info():
    """Current stage, allowed moves, violations and suggestions"""
    process_id = request.args.get('processId')
    if not process_id:
        return jsonify({'error': 'processId required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        return jsonify({'success': True, **service.get_stage_info(process_id)}), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error loading stage info for {process_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/update-stage', methods=['POST'])
def update_stage():
    """
    Move a process along the Kanban board

    Expects JSON body:
    {
        "processId": 12,
        "newStage": "em_transporte_internacional",
        "force": false,
        "reason": "...",
        "notes": "..."
    }

    Returns:
        200 on success, 422 with violations when the rules block the move
    """
    try:
        body = StageChangeRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.update_stage(
            body.process_id,
            body.new_stage,
            get_current_user(),
            force=body.force,
            reason=body.reason,
            notes=body.notes
        )
        return jsonify(result), 200
    except StageTransitionBlocked as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'violations': e.violations,
            'requiredDocuments': e.required_documents,
            'canForce': True,
        }), 422
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error updating stage: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/audit-logs', methods=['GET'])
def get_audit_logs():
    process_id = request.args.get('processId')
    if not process_id:
        return jsonify({'error': 'processId required'}), 400

    try:
        limit = int(request.args.get('limit', 50))
        offset = int(request.args.get('offset', 0))
    except ValueError:
        return jsonify({'error': 'limit and offset must be integers'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        return jsonify({'success': True, **service.get_audit_logs(process_id, limit, offset)}), 200
    except Exception as e:
        logger.error(f"Error loading audit logs: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/audit-logs', methods=['POST'])
def create_audit_log():
    try:
        body = AuditLogRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    service = _get_process_service()
    if not service:
        return _unavailable()

    reason = body.reason
    if body.notes:
        reason = f'{reason or "Atualização manual"}. Observações: {body.notes}'

    try:
        result = service.create_audit_log(
            body.process_id,
            body.process_number,
            get_current_user(),
            previous_stage=body.previous_stage,
            new_stage=body.new_stage,
            reason=reason
        )
        return jsonify({'success': True, **result}), 200
    except Exception as e:
        logger.error(f"Error creating audit log: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/documents', methods=['GET'])
def list_documents():
    """Uploads linked to a process plus its document completion status"""
    process_id = request.args.get('processId')
    if not process_id:
        return jsonify({'error': 'processId required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        process = service.require_process(process_id)
        documents = []
        for uploads in service.documents.get_process_documents(process_id).values():
            for upload in uploads:
                documents.append({
                    'id': upload.get('Id'),
                    'hashArquivo': upload.get('hashArquivo'),
                    'nomeArquivo': upload.get('nomeOriginal') or upload.get('nomeArquivo'),
                    'tipoDocumento': upload.get('tipoDocumento'),
                    'dataUpload': upload.get('dataUpload'),
                    'statusProcessamento': upload.get('statusProcessamento') or 'pendente',
                    'usuario': upload.get('emailUsuario') or upload.get('idUsuario'),
                    'tamanho': upload.get('tamanhoArquivo'),
                    'idDocumento': upload.get('idDocumento'),
                })

        return jsonify({
            'success': True,
            'processId': process_id,
            'processNumber': process.get('numero_processo'),
            'documents': documents,
            'total': len(documents),
            'completionStatus': service.documents.get_process_completion_status(process_id),
        }), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error listing documents for {process_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/documents/delete', methods=['POST'])
def remove_document():
    """
    Detach a document from a process

    Expects JSON body:
    {
        "documentHash": "sha256",
        "processId": 12
    }
    """
    body = request.get_json(silent=True) or {}
    document_hash = body.get('documentHash')
    process_id = body.get('processId')
    if not document_hash or not process_id:
        return jsonify({'error': 'documentHash and processId required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.remove_document(process_id, document_hash, get_current_user())
        return jsonify({
            'success': True,
            'message': 'Document removed from process successfully',
            'documentHash': document_hash,
            'processId': process_id,
            'isOrphan': result['isOrphan'],
            'linkedProcessCount': result['linkedProcessCount'],
        }), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error removing document {document_hash}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/attach-document', methods=['POST'])
def attach_document():
    """Record an attached document in the process notes"""
    body = request.get_json(silent=True) or {}
    process_id = body.get('processId')
    document_id = body.get('documentId')
    document_type = body.get('documentType')
    if not process_id or not document_id or not document_type:
        return jsonify({'error': 'processId, documentId and documentType required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.attach_document_note(process_id, document_id, document_type, get_current_user())
        return jsonify({'success': True, 'message': 'Documento anexado com sucesso', **result}), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error attaching document: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/connect-documents', methods=['POST'])
def connect_documents():
    """Create the process/document relation for a file hash"""
    body = request.get_json(silent=True) or {}
    process_id = body.get('processId')
    file_hash = body.get('fileHash')
    if not process_id or not file_hash:
        return jsonify({'error': 'Missing required fields: processId, fileHash'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        logger.info(f"🔗 Connecting {file_hash[:12]} to process {process_id}")
        relation = service.documents.link_document_to_process(process_id, file_hash)
        return jsonify({
            'success': True,
            'relationId': relation.get('Id'),
            'message': 'Documento conectado ao processo com sucesso',
        }), 200
    except Exception as e:
        logger.error(f"Error connecting document: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/migrate-stages', methods=['POST'])
def migrate_stages():
    """Rewrite legacy etapa labels to stage ids"""
    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.migrate_stages()
        return jsonify({'success': not result['errors'], **result}), 200
    except Exception as e:
        logger.error(f"Error migrating stages: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/update-from-proforma', methods=['POST'])
def update_from_proforma():
    body = request.get_json(silent=True) or {}
    process_id = body.get('processId')
    proforma_data = body.get('proformaData')
    if not process_id or not isinstance(proforma_data, dict):
        return jsonify({'error': 'processId and proformaData required'}), 400

    service = _get_process_service()
    if not service:
        return _unavailable()

    try:
        result = service.update_from_proforma(process_id, proforma_data, get_current_user())
        return jsonify({'success': True, 'message': 'Processo atualizado com dados da proforma', **result}), 200
    except ProcessNotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error updating process from proforma: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500
