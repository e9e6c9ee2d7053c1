"""
Process Service
Import process (processo de importação) lifecycle: listing, creation,
Kanban stage changes, document attachments, audit logs and matching
"""
import json
import time
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from importflow.kanban import DEFAULT_STAGE, STAGE_IDS, STAGE_MAPPINGS, is_valid_stage
from importflow.nocodb_tables import NOCODB_TABLES
from importflow.services.business_rules import ProcessBusinessRules
from importflow.services.document_cache import utc_now_iso
from importflow.services.document_processors import unwrap_section
from importflow.services.nocodb import (
    NocoDBError,
    NocoDBService,
    get_nocodb_service,
    is_missing_table_error,
    where_eq,
)
from importflow.services.process_documents import ProcessDocumentService

logger = logging.getLogger('importflow.processes')

AUDIT_TABLE_MISSING_WARNING = 'Audit log table not configured'
AI_MATCH_FAILED_MESSAGE = 'AI matching failed, please try fuzzy mode'

MATCH_SYSTEM_PROMPT = (
    "You match trade documents to import processes. "
    "Answer with a JSON object {\"matches\": [...]} where each match has "
    "processo_numero, confidence (0-1), matching_criteria (list) and explanation."
)


class StageTransitionBlocked(Exception):
    """A forward stage move that the business rules do not allow"""

    def __init__(self, message: str, violations: List[Dict], required_documents: List[str]):
        super().__init__(message)
        self.violations = violations
        self.required_documents = required_documents


class ProcessNotFound(LookupError):
    pass


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(str(value).replace(',', ''))
    except ValueError:
        return None


class ProcessService:
    """Operations on PROCESSOS_IMPORTACAO and the stage audit log"""

    def __init__(self, nocodb: Optional[NocoDBService] = None, llm=None):
        self.nocodb = nocodb or get_nocodb_service()
        self.llm = llm
        self.documents = ProcessDocumentService(self.nocodb)
        self.processes_table = NOCODB_TABLES['PROCESSOS_IMPORTACAO']
        self.uploads_table = NOCODB_TABLES['DOCUMENT_UPLOADS']
        self.audit_table = NOCODB_TABLES['LOGS']['ETAPA_AUDIT']

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_processes(self, limit: int = 100) -> List[Dict]:
        return self.nocodb.find(self.processes_table, sort='-criado_em,-data_inicio', limit=limit)['list']

    def list_open_processes(self, limit: int = 100) -> List[Dict]:
        return self.nocodb.find(
            self.processes_table,
            where='(status,neq,concluido)~and(status,neq,cancelado)',
            sort='-data_inicio',
            limit=limit
        )['list']

    def search_by_invoice(self, invoice_number: str, limit: int = 10) -> List[Dict]:
        return self.nocodb.find(
            self.processes_table,
            where=where_eq('invoiceNumber', invoice_number),
            limit=limit
        )['list']

    def get_process(self, process_id: Any) -> Optional[Dict]:
        return self.nocodb.find_one(self.processes_table, process_id)

    def require_process(self, process_id: Any) -> Dict:
        process = self.get_process(process_id)
        if not process:
            raise ProcessNotFound(f'Processo {process_id} não encontrado')
        return process

    def get_process_by_number(self, process_number: str) -> Optional[Dict]:
        return self.nocodb.find_by_field(self.processes_table, 'numero_processo', process_number)

    def check_process(self, process_id: Any) -> Dict:
        """Process plus its linked uploads grouped by type"""
        process = self.require_process(process_id)
        by_type = self.documents.get_process_documents(process_id)

        details = []
        for document_type, uploads in by_type.items():
            for upload in uploads:
                details.append({
                    'id': upload.get('Id'),
                    'type': document_type,
                    'fileHash': upload.get('hashArquivo'),
                    'originalName': upload.get('nomeOriginal'),
                    'status': upload.get('statusProcessamento'),
                    'uploadedAt': upload.get('dataUpload'),
                    'documentId': upload.get('idDocumento'),
                })

        return {
            'process': {
                'id': process.get('Id'),
                'numeroProcesso': process.get('numero_processo'),
                'empresa': process.get('empresa'),
                'invoice': process.get('invoiceNumber'),
                'status': process.get('status'),
                'etapa': process.get('etapa') or DEFAULT_STAGE,
                'dataInicio': process.get('data_inicio'),
            },
            'documents': {
                'total': len(details),
                'byType': {document_type: len(uploads) for document_type, uploads in by_type.items()},
                'types': list(by_type.keys()),
                'details': details,
            },
        }

    # ------------------------------------------------------------------
    # Creation and removal
    # ------------------------------------------------------------------

    def create_simple(self, invoice_number: str, file_hash: Optional[str], user: Dict[str, str]) -> Dict:
        """
        Create (or reuse) IMP-<invoice> and link the file to it

        Returns:
            Dict with process, processId, numeroProcesso and isNew
        """
        process_number = f'IMP-{invoice_number}'
        process = self.get_process_by_number(process_number)
        is_new = process is None

        if is_new:
            process = self.nocodb.create(self.processes_table, {
                'numero_processo': process_number,
                'invoiceNumber': invoice_number,
                'descricao': 'Processo criado automaticamente via documento desconhecido',
                'empresa': 'A definir',
                'responsavel': 'Sistema',
                'data_inicio': date.today().isoformat(),
                'status': 'active',
                'etapa': DEFAULT_STAGE,
                'criado_por': user.get('email') or user.get('id'),
            }) or {}
            logger.info(f"🆕 Created process {process_number}")
        else:
            logger.info(f"Reusing existing process {process_number}")

        process_id = process.get('Id')
        if file_hash:
            self.documents.link_document_to_process(process_id, file_hash)
            upload = self.nocodb.find_by_field(self.uploads_table, 'hashArquivo', file_hash)
            if upload and (upload.get('tipoDocumento') or '').lower() in ('unknown', 'desconhecido'):
                self.nocodb.update(self.uploads_table, upload['Id'], {
                    'tipoDocumento': 'identificado_com_processo'
                })

        return {
            'process': process,
            'processId': process_id,
            'numeroProcesso': process_number,
            'isNew': is_new,
        }

    def delete_process(self, process_id: Any, user: Dict[str, str]) -> Dict:
        """
        Remove a process and every document relation it has

        Raises:
            ProcessNotFound: unknown process
        """
        process = self.require_process(process_id)
        process_number = process.get('numero_processo')

        relations = self.documents.get_relations(process_id, limit=1000)
        relation_ids = [relation['Id'] for relation in relations if 'Id' in relation]
        if relation_ids:
            self.nocodb.bulk_delete(self.documents.relations_table, relation_ids)

        audit_created = self._write_audit({
            'hash_arquivo_origem': f'delete_{process_id}_{int(time.time() * 1000)}',
            'numero_processo': process_number,
            'responsavel': user.get('email') or user.get('id'),
            'ultima_etapa': process.get('etapa') or DEFAULT_STAGE,
            'nova_etapa': 'excluido',
            'descricao_regra': (
                f'Processo {process_number} excluído permanentemente. '
                f'{len(relation_ids)} documento(s) desvinculado(s).'
            ),
        })

        self.nocodb.delete(self.processes_table, process_id)
        logger.info(f"🗑️ Deleted process {process_number} ({len(relation_ids)} relations)")

        return {
            'processId': process_id,
            'numeroProcesso': process_number,
            'documentosDesvinculados': len(relation_ids),
            'auditLogCriado': audit_created,
        }

    # ------------------------------------------------------------------
    # Kanban
    # ------------------------------------------------------------------

    def get_attached_documents(self, process_id: Any) -> List[str]:
        return self.documents.get_attached_document_types(process_id)

    def update_stage(
        self,
        process_id: Any,
        new_stage: str,
        user: Dict[str, str],
        force: bool = False,
        reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Dict:
        """
        Move a process to another Kanban stage

        Raises:
            ValueError: invalid stage
            ProcessNotFound: unknown process
            StageTransitionBlocked: the rules reject the move and force is off
        """
        if not is_valid_stage(new_stage):
            raise ValueError(f"Invalid stage: {new_stage}. Valid stages are: {', '.join(STAGE_IDS)}")

        process = self.require_process(process_id)
        old_stage = process.get('etapa') or DEFAULT_STAGE
        attached = self.get_attached_documents(process_id)

        transition = ProcessBusinessRules.check_stage_transition(old_stage, new_stage, attached, force)
        violations = [violation.to_dict() for violation in transition.violations]
        if not transition.allowed:
            logger.info(f"⛔ Stage change {old_stage} -> {new_stage} blocked for process {process_id}")
            raise StageTransitionBlocked(
                f'Transição de "{old_stage}" para "{new_stage}" não permitida',
                violations,
                transition.required_documents,
            )

        responsible = user.get('email') or user.get('id')
        update = {
            'etapa': new_stage,
            'atualizado_em': utc_now_iso(),
            'atualizado_por': responsible,
        }
        if new_stage == 'auditado' and process.get('status') != 'completed':
            update['status'] = 'completed'

        self.nocodb.update(self.processes_table, process_id, update)

        description = reason or 'Mudança de etapa'
        if notes:
            description = f'{description}. Observações: {notes}'
        if force:
            overridden = ProcessBusinessRules.check_stage_transition(old_stage, new_stage, attached).violations
            if overridden:
                summary = '; '.join(ProcessBusinessRules.format_violation_message(v) for v in overridden)
                description = f'{description}. Forçado com violações: {summary}'
                violations = [violation.to_dict() for violation in overridden]

        self._write_audit({
            'hash_arquivo_origem': f'stage_{process_id}_{int(time.time() * 1000)}',
            'numero_processo': process.get('numero_processo'),
            'responsavel': responsible,
            'ultima_etapa': old_stage,
            'nova_etapa': new_stage,
            'descricao_regra': description,
        })

        logger.info(f"📋 Process {process_id}: {old_stage} -> {new_stage}{' (forced)' if force else ''}")
        return {
            'success': True,
            'processId': process_id,
            'oldStage': old_stage,
            'newStage': new_stage,
            'updatedFields': list(update.keys()),
            'violations': violations,
        }

    def get_stage_info(self, process_id: Any) -> Dict:
        process = self.require_process(process_id)
        current = process.get('etapa') or DEFAULT_STAGE
        attached = self.get_attached_documents(process_id)

        can_transition_to = []
        for stage in STAGE_IDS:
            if stage == current:
                continue
            result = ProcessBusinessRules.check_stage_transition(current, stage, attached)
            can_transition_to.append({
                'stage': stage,
                'allowed': result.allowed,
                'violations': [violation.to_dict() for violation in result.violations],
                'requiredDocuments': result.required_documents,
            })

        return {
            'processId': process_id,
            'currentStage': current,
            'canTransitionTo': can_transition_to,
            'violations': [v.to_dict() for v in ProcessBusinessRules.get_all_violations(current, attached)],
            'suggestions': [v.to_dict() for v in ProcessBusinessRules.get_suggestions(current, attached)],
            'requiredDocuments': [
                info.model_dump(by_alias=True)
                for info in ProcessBusinessRules.get_stage_required_documents(current)
            ],
            'suggestedStage': ProcessBusinessRules.get_suggested_stage(attached),
            'attachedDocuments': attached,
        }

    def migrate_stages(self) -> Dict:
        """Rewrite legacy etapa labels to stage ids"""
        processes = self.nocodb.find(self.processes_table, limit=1000)['list']
        migrated = 0
        errors = []

        for process in processes:
            current = process.get('etapa')
            if not current or is_valid_stage(current):
                continue
            target = STAGE_MAPPINGS.get(current) or STAGE_MAPPINGS.get(current.strip().lower())
            if not target:
                errors.append({'processId': process.get('Id'), 'etapa': current, 'error': 'Etapa desconhecida'})
                continue
            try:
                self.nocodb.update(self.processes_table, process['Id'], {'etapa': target})
                migrated += 1
            except NocoDBError as e:
                errors.append({'processId': process.get('Id'), 'etapa': current, 'error': str(e)})

        logger.info(f"Stage migration: {migrated}/{len(processes)} migrated, {len(errors)} errors")
        return {'totalProcesses': len(processes), 'migratedCount': migrated, 'errors': errors}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def update_from_proforma(self, process_id: Any, proforma_data: Dict, user: Dict[str, str]) -> Dict:
        """Fill invoice, company and estimated value from a proforma header"""
        self.require_process(process_id)
        header = unwrap_section(proforma_data.get('header', proforma_data)) or {}

        update: Dict[str, Any] = {
            'atualizado_em': utc_now_iso(),
            'atualizado_por': user.get('email') or user.get('id'),
        }
        if header.get('invoice_number'):
            update['invoiceNumber'] = header['invoice_number']
        if header.get('contracted_company'):
            update['empresa'] = header['contracted_company']
        total = _to_float(header.get('total_price'))
        if total is not None:
            update['valor_total_estimado'] = total
            update['moeda'] = 'USD'

        self.nocodb.update(self.processes_table, process_id, update)
        return {'processId': process_id, 'updatedFields': list(update.keys())}

    def attach_document_note(self, process_id: Any, document_id: Any, document_type: str,
                             user: Dict[str, str]) -> Dict:
        process = self.require_process(process_id)
        stamp = datetime.now().strftime('%d/%m/%Y %H:%M')
        line = f'[{stamp}] Documento {document_type} ({document_id}) anexado por {user.get("email") or user.get("id")}'

        existing = process.get('descricao_adicionais') or ''
        update = {'descricao_adicionais': f'{existing}\n{line}' if existing else line}
        if process.get('status_atual') == 'aberto':
            update['status_atual'] = 'em_andamento'

        self.nocodb.update(self.processes_table, process_id, update)
        return {'processId': process_id, 'updatedFields': list(update.keys())}

    def remove_document(self, process_id: Any, file_hash: str, user: Dict[str, str]) -> Dict:
        """
        Detach a document from a process

        The upload is marked 'removido' once no process references it.
        """
        process = self.require_process(process_id)
        unlinked = self.documents.unlink_document_from_process(process_id, file_hash)

        remaining = self.documents.get_document_processes(file_hash)
        is_orphan = not remaining
        if is_orphan:
            upload = self.nocodb.find_by_field(self.uploads_table, 'hashArquivo', file_hash)
            if upload:
                self.nocodb.update(self.uploads_table, upload['Id'], {'statusProcessamento': 'removido'})

        self._write_audit({
            'hash_arquivo_origem': file_hash,
            'numero_processo': process.get('numero_processo'),
            'responsavel': user.get('email') or user.get('id'),
            'ultima_etapa': 'document_attached',
            'nova_etapa': 'document_removed',
            'descricao_regra': f'Documento {file_hash[:12]} removido do processo',
        })

        self.documents.remove_from_pipeline(process, file_hash)
        return {
            'processId': process_id,
            'fileHash': file_hash,
            'unlinked': unlinked,
            'isOrphan': is_orphan,
            'linkedProcessCount': len(remaining),
        }

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def _write_audit(self, entry: Dict) -> bool:
        """Stage audit entry; never fails the caller"""
        try:
            self.nocodb.create(self.audit_table, entry)
            return True
        except Exception as e:
            logger.warning(f"Could not write audit log: {e}")
            return False

    def _process_number(self, process_id: Any) -> Any:
        process = self.get_process(process_id)
        return process.get('numero_processo') if process else process_id

    def get_audit_logs(self, process_id: Any, limit: int = 50, offset: int = 0) -> Dict:
        process_number = self._process_number(process_id)
        try:
            rows = self.nocodb.find(
                self.audit_table,
                where=where_eq('numero_processo', process_number),
                sort='-CreatedAt',
                limit=limit,
                offset=offset
            )['list']
        except NocoDBError as e:
            if is_missing_table_error(e):
                return {'logs': [], 'total': 0, 'warning': AUDIT_TABLE_MISSING_WARNING}
            raise

        logs = [{
            'id': row.get('Id'),
            'hash_arquivo_origem': row.get('hash_arquivo_origem'),
            'numero_processo': row.get('numero_processo'),
            'responsavel': row.get('responsavel'),
            'ultima_etapa': row.get('ultima_etapa'),
            'nova_etapa': row.get('nova_etapa'),
            'descricao_regra': row.get('descricao_regra'),
            'created_at': row.get('CreatedAt'),
            'updated_at': row.get('UpdatedAt'),
        } for row in rows]
        return {'logs': logs, 'total': len(logs)}

    def create_audit_log(self, process_id: Any, process_number: str, user: Dict[str, str],
                         previous_stage: Optional[str] = None, new_stage: Optional[str] = None,
                         reason: Optional[str] = None) -> Dict:
        entry = {
            'hash_arquivo_origem': f'manual_{process_id}_{int(time.time() * 1000)}',
            'numero_processo': process_number,
            'responsavel': user.get('email') or user.get('id'),
            'ultima_etapa': previous_stage or '',
            'nova_etapa': new_stage or '',
            'descricao_regra': reason or 'Atualização manual',
        }
        try:
            created = self.nocodb.create(self.audit_table, entry) or {}
        except NocoDBError as e:
            if is_missing_table_error(e):
                return {'logId': None, 'warning': AUDIT_TABLE_MISSING_WARNING}
            raise
        return {'logId': created.get('Id')}

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_matching_processes(self, document_data: Dict, mode: str = 'ai') -> Dict:
        """
        Find active processes a document belongs to

        Args:
            document_data: invoiceNumber, companyName, amount, currency, ...
            mode: 'strict', 'fuzzy' or 'ai'
        """
        processes = self.nocodb.find(
            self.processes_table,
            where='(status,eq,active)',
            sort='-data_inicio',
            limit=1000
        )['list']
        if not processes:
            return {'matches': [], 'message': 'Nenhum processo ativo encontrado'}

        invoice = document_data.get('invoiceNumber')
        if mode == 'strict':
            matches = [p for p in processes if invoice and p.get('invoiceNumber') == invoice]
        elif mode == 'fuzzy':
            matches = [p for p in processes if self._fuzzy_score(document_data, p) >= 3]
        else:
            try:
                matches = self._ai_matches(document_data, processes)
            except Exception as e:
                logger.error(f"AI process matching failed: {e}")
                return {'matches': [], 'message': AI_MATCH_FAILED_MESSAGE, 'error': str(e)}

        return {'matches': matches[:10], 'totalProcesses': len(processes), 'searchMode': mode}

    @staticmethod
    def _fuzzy_score(document_data: Dict, process: Dict) -> int:
        score = 0
        invoice = document_data.get('invoiceNumber')
        process_invoice = process.get('invoiceNumber')
        if invoice and process_invoice and (invoice in process_invoice or process_invoice in invoice):
            score += 5

        company = (document_data.get('companyName') or '').lower()
        empresa = (process.get('empresa') or '').lower()
        if company and empresa and (company in empresa or empresa in company):
            score += 3

        amount = _to_float(document_data.get('amount'))
        estimated = _to_float(process.get('valor_total_estimado'))
        if amount and estimated and abs(amount - estimated) / estimated < 0.1:
            score += 2
        return score

    def _ai_matches(self, document_data: Dict, processes: List[Dict]) -> List[Dict]:
        if self.llm is None:
            raise ValueError('LLM not configured')

        summary = [{
            'numero_processo': p.get('numero_processo'),
            'invoiceNumber': p.get('invoiceNumber'),
            'empresa': p.get('empresa'),
            'valor_total_estimado': p.get('valor_total_estimado'),
            'moeda': p.get('moeda'),
            'data_inicio': p.get('data_inicio'),
            'porto_embarque': p.get('porto_embarque'),
            'porto_destino': p.get('porto_destino'),
        } for p in processes]

        prompt = (
            f"Document data:\n{json.dumps(document_data, ensure_ascii=False, indent=2)}\n\n"
            f"Existing processes:\n{json.dumps(summary, ensure_ascii=False, indent=2)}\n\n"
            "Match on invoice numbers (exact or partial), company names (variations and "
            "abbreviations), amounts and dates. Return an empty list when nothing matches."
        )
        answer = self.llm.complete_json(MATCH_SYSTEM_PROMPT, prompt)

        by_number = {p.get('numero_processo'): p for p in processes}
        matches = []
        for match in answer.get('matches', []):
            process = by_number.get(match.get('processo_numero'))
            if not process:
                continue
            matches.append({
                **process,
                'ai_confidence': match.get('confidence', 0),
                'ai_matching_criteria': match.get('matching_criteria', []),
                'ai_explanation': match.get('explanation', ''),
            })
        matches.sort(key=lambda m: m['ai_confidence'] or 0, reverse=True)
        return matches
