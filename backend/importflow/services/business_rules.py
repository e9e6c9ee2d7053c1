"""
Process Business Rules
Static rule table mapping Kanban stages to required documents,
plus the checks used to validate stage transitions
"""
import logging
from typing import Dict, Iterable, List, Optional
from pydantic import BaseModel, Field
from importflow.kanban import STAGE_IDS, TRANSITIONS, DEFAULT_STAGE, stage_index

logger = logging.getLogger('importflow.rules')


class DocumentTypeInfo(BaseModel):
    type: str
    name: str
    is_required: bool = Field(..., alias='isRequired')
    stage: str

    class Config:
        populate_by_name = True


class BusinessRuleViolation(BaseModel):
    """A single rule outcome shown to the user on the board"""
    rule_id: str = Field(..., alias='ruleId')
    rule_name: str = Field(..., alias='ruleName')
    severity: str
    message: str
    missing_documents: List[str] = Field(default_factory=list, alias='missingDocuments')
    current_stage: Optional[str] = Field(None, alias='currentStage')
    suggested_stage: Optional[str] = Field(None, alias='suggestedStage')

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict:
        return self.model_dump(by_alias=True)


class StageTransitionResult(BaseModel):
    allowed: bool
    violations: List[BusinessRuleViolation] = []
    required_documents: List[str] = Field(default_factory=list, alias='requiredDocuments')

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict:
        return self.model_dump(by_alias=True)


DOCUMENT_TYPES: Dict[str, DocumentTypeInfo] = {
    info.type: info for info in [
        DocumentTypeInfo(type='proforma_invoice', name='Proforma Invoice', is_required=True, stage='solicitado'),
        DocumentTypeInfo(type='commercial_invoice', name='Commercial Invoice', is_required=False, stage='solicitado'),
        DocumentTypeInfo(type='numerario', name='Numerário', is_required=False, stage='solicitado'),
        DocumentTypeInfo(type='contrato_cambio', name='Contrato de Câmbio', is_required=False, stage='solicitado'),
        DocumentTypeInfo(type='swift', name='SWIFT', is_required=False, stage='solicitado'),
        DocumentTypeInfo(type='packing_list', name='Packing List', is_required=False, stage='solicitado'),
        DocumentTypeInfo(type='bl', name='Bill of Lading (BL)', is_required=True, stage='em_transporte_internacional'),
        DocumentTypeInfo(type='di', name='Declaração de Importação (DI)', is_required=True, stage='processamento_nacional'),
        DocumentTypeInfo(type='nota_fiscal', name='Nota Fiscal', is_required=True, stage='recebido'),
    ]
}

STAGE_REQUIREMENTS: Dict[str, List[str]] = {
    'solicitado': ['proforma_invoice'],
    'em_transporte_internacional': ['proforma_invoice', 'bl'],
    'processamento_nacional': ['proforma_invoice', 'bl', 'di'],
    'em_transporte_local': ['proforma_invoice', 'bl', 'di'],
    'recebido': ['proforma_invoice', 'bl', 'di', 'nota_fiscal'],
    'auditado': ['proforma_invoice', 'bl', 'di', 'nota_fiscal'],
}

# Stage reached without its document -> (rule id, document, message)
_SKIPPED_DOCUMENT_RULES = {
    'em_transporte_internacional': ('RN-04', 'bl', 'Processo avançou sem Bill of Lading (BL)'),
    'processamento_nacional': ('RN-05', 'di', 'Processo avançou sem Declaração de Importação (DI)'),
    'recebido': ('RN-07', 'nota_fiscal', 'Processo avançou sem Nota Fiscal'),
}


class ProcessBusinessRules:
    """Rule engine for import process stages (stateless)"""

    @staticmethod
    def check_proforma_required(attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        if 'proforma_invoice' in set(attached):
            return None
        return BusinessRuleViolation(
            rule_id='RN-01',
            rule_name='Proforma Invoice obrigatória',
            severity='error',
            message='Um processo de importação deve conter o anexo da Proforma Invoice',
            missing_documents=['proforma_invoice'],
        )

    @staticmethod
    def check_solicitado_stage(stage: str, attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        docs = set(attached)
        if stage != 'solicitado':
            return None
        if 'proforma_invoice' in docs or 'commercial_invoice' in docs:
            return None
        return BusinessRuleViolation(
            rule_id='RN-02',
            rule_name='Documentos da etapa Solicitado',
            severity='warning',
            message='A etapa Solicitado requer Proforma Invoice ou Commercial Invoice',
            missing_documents=['proforma_invoice', 'commercial_invoice'],
            current_stage=stage,
        )

    @staticmethod
    def check_transport_internacional(stage: str, attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        if stage != 'solicitado' or 'bl' not in set(attached):
            return None
        return BusinessRuleViolation(
            rule_id='RN-04',
            rule_name='Bill of Lading anexado',
            severity='info',
            message='Bill of Lading anexado. O processo pode avançar para Em Transporte Internacional',
            current_stage=stage,
            suggested_stage='em_transporte_internacional',
        )

    @staticmethod
    def check_processamento_nacional(stage: str, attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        if stage != 'em_transporte_internacional' or 'di' not in set(attached):
            return None
        return BusinessRuleViolation(
            rule_id='RN-05',
            rule_name='DI anexada',
            severity='info',
            message='Declaração de Importação anexada. O processo pode avançar para Processamento Nacional',
            current_stage=stage,
            suggested_stage='processamento_nacional',
        )

    @staticmethod
    def check_recebido(stage: str, attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        if stage not in ('em_transporte_local', 'processamento_nacional'):
            return None
        if 'nota_fiscal' not in set(attached):
            return None
        return BusinessRuleViolation(
            rule_id='RN-07',
            rule_name='Nota Fiscal anexada',
            severity='info',
            message='Nota Fiscal anexada. O processo pode avançar para Recebido',
            current_stage=stage,
            suggested_stage='recebido',
        )

    @staticmethod
    def check_auditado(stage: str, attached: Iterable[str]) -> Optional[BusinessRuleViolation]:
        if stage != 'auditado':
            return None
        docs = set(attached)
        missing = [doc for doc in STAGE_REQUIREMENTS['auditado'] if doc not in docs]
        if not missing:
            return None
        return BusinessRuleViolation(
            rule_id='RN-10',
            rule_name='Auditoria completa',
            severity='warning',
            message='Para finalizar auditoria, todos os documentos devem estar anexados',
            missing_documents=missing,
            current_stage=stage,
        )

    @classmethod
    def check_stage_transition(
        cls,
        from_stage: str,
        to_stage: str,
        attached: Iterable[str],
        force: bool = False
    ) -> StageTransitionResult:
        """
        Validate moving a process between two stages

        Moving back (or staying put) is always allowed. Moving forward
        requires the target stage to be reachable and every document the
        target stage needs, unless forced. required_documents lists only
        the documents still missing.
        """
        if stage_index(to_stage) <= stage_index(from_stage):
            return StageTransitionResult(allowed=True, violations=[], required_documents=[])

        docs = set(attached)
        missing = [doc for doc in STAGE_REQUIREMENTS.get(to_stage, []) if doc not in docs]
        violations = []

        if missing and not force:
            violations.append(BusinessRuleViolation(
                rule_id='RN-08',
                rule_name='Documentos obrigatórios para a etapa',
                severity='warning',
                message=f'Documentos faltantes para a etapa "{to_stage}": {", ".join(missing)}',
                missing_documents=missing,
                current_stage=from_stage,
                suggested_stage=from_stage,
            ))

        reachable = to_stage in TRANSITIONS.get(from_stage, [])
        allowed = (reachable or force) and (not missing or force)
        if not allowed:
            logger.debug(f"Transition {from_stage} -> {to_stage} blocked (reachable={reachable}, missing={missing})")

        return StageTransitionResult(allowed=allowed, violations=violations, required_documents=missing)

    @classmethod
    def get_all_violations(cls, stage: str, attached: Iterable[str]) -> List[BusinessRuleViolation]:
        """Every rule violated by a process sitting at `stage`"""
        docs = set(attached)
        current = stage or DEFAULT_STAGE
        violations: List[BusinessRuleViolation] = []

        proforma = cls.check_proforma_required(docs)
        if proforma:
            violations.append(proforma)

        current_index = stage_index(current)
        for index, passed in enumerate(STAGE_IDS):
            if index > current_index:
                break
            if passed == 'solicitado':
                if passed == current:
                    solicitado = cls.check_solicitado_stage(current, docs)
                    if solicitado:
                        violations.append(solicitado)
                continue
            # only stages already left behind count as skipped
            if index == current_index:
                break
            skipped = _SKIPPED_DOCUMENT_RULES.get(passed)
            if skipped and skipped[1] not in docs:
                rule_id, document, message = skipped
                violations.append(BusinessRuleViolation(
                    rule_id=rule_id,
                    rule_name=f'{DOCUMENT_TYPES[document].name} obrigatório',
                    severity='error',
                    message=message,
                    missing_documents=[document],
                    current_stage=current,
                ))

        audit = cls.check_auditado(current, docs)
        if audit:
            violations.append(audit)

        return violations

    @classmethod
    def get_suggestions(cls, stage: str, attached: Iterable[str]) -> List[BusinessRuleViolation]:
        """Advisory rules that fire at the current stage"""
        docs = set(attached)
        suggestions = []
        for check in (cls.check_transport_internacional, cls.check_processamento_nacional, cls.check_recebido):
            result = check(stage, docs)
            if result:
                suggestions.append(result)
        return suggestions

    @staticmethod
    def get_suggested_stage(attached: Iterable[str]) -> str:
        docs = set(attached)
        has_base = 'proforma_invoice' in docs and 'bl' in docs
        if has_base and 'di' in docs and 'nota_fiscal' in docs:
            return 'recebido'
        if has_base and 'di' in docs:
            return 'processamento_nacional'
        if has_base:
            return 'em_transporte_internacional'
        return 'solicitado'

    @staticmethod
    def get_document_type_info(document_type: str) -> Optional[DocumentTypeInfo]:
        return DOCUMENT_TYPES.get(document_type)

    @staticmethod
    def get_all_document_types() -> List[DocumentTypeInfo]:
        return list(DOCUMENT_TYPES.values())

    @staticmethod
    def get_stage_required_documents(stage: str) -> List[DocumentTypeInfo]:
        return [DOCUMENT_TYPES[doc] for doc in STAGE_REQUIREMENTS.get(stage, []) if doc in DOCUMENT_TYPES]

    @staticmethod
    def format_violation_message(violation: BusinessRuleViolation) -> str:
        if not violation.missing_documents:
            return violation.message
        names = [
            DOCUMENT_TYPES[doc].name if doc in DOCUMENT_TYPES else doc
            for doc in violation.missing_documents
        ]
        return f"{violation.message} ({', '.join(names)})"
