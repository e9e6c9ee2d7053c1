"""
Kanban Workflow Configuration
Stages an import process moves through and the moves allowed between them
"""
from typing import Dict, List

STAGES: List[Dict[str, str]] = [
    {
        'id': 'solicitado',
        'title': 'Solicitado',
        'description': 'Pedido de importação aberto com o fornecedor'
    },
    {
        'id': 'em_transporte_internacional',
        'title': 'Em Transporte Internacional',
        'description': 'Carga embarcada, em trânsito até o porto de destino'
    },
    {
        'id': 'processamento_nacional',
        'title': 'Processamento Nacional',
        'description': 'Desembaraço aduaneiro e registro da DI'
    },
    {
        'id': 'em_transporte_local',
        'title': 'Em Transporte Local',
        'description': 'Carga liberada, em trânsito até o armazém'
    },
    {
        'id': 'recebido',
        'title': 'Recebido',
        'description': 'Mercadoria recebida e nota fiscal emitida'
    },
    {
        'id': 'auditado',
        'title': 'Auditado',
        'description': 'Processo conferido e encerrado'
    },
]

STAGE_IDS: List[str] = [stage['id'] for stage in STAGES]

DEFAULT_STAGE = 'solicitado'


def _build_transitions() -> Dict[str, List[str]]:
    # A process may move one stage forward or back to any earlier stage
    transitions = {}
    for index, stage in enumerate(STAGE_IDS):
        allowed = []
        if index + 1 < len(STAGE_IDS):
            allowed.append(STAGE_IDS[index + 1])
        allowed.extend(STAGE_IDS[:index])
        transitions[stage] = allowed
    return transitions


TRANSITIONS: Dict[str, List[str]] = _build_transitions()

# Legacy labels stored by older versions of the board
STAGE_MAPPINGS: Dict[str, str] = {
    'Solicitado': 'solicitado',
    'SOLICITADO': 'solicitado',
    'Em Transporte Internacional': 'em_transporte_internacional',
    'em-transporte-internacional': 'em_transporte_internacional',
    'emTransporteInternacional': 'em_transporte_internacional',
    'Processamento Nacional': 'processamento_nacional',
    'processamento-nacional': 'processamento_nacional',
    'processamentoNacional': 'processamento_nacional',
    'Em Transporte Local': 'em_transporte_local',
    'em-transporte-local': 'em_transporte_local',
    'emTransporteLocal': 'em_transporte_local',
    'Recebido': 'recebido',
    'RECEBIDO': 'recebido',
    'Auditado': 'auditado',
    'AUDITADO': 'auditado',
}


def is_valid_stage(stage: str) -> bool:
    return stage in STAGE_IDS


def stage_index(stage: str) -> int:
    """Position of a stage in the workflow, -1 when unknown"""
    try:
        return STAGE_IDS.index(stage)
    except ValueError:
        return -1


def get_stage(stage: str) -> Dict[str, str]:
    for entry in STAGES:
        if entry['id'] == stage:
            return entry
    raise ValueError(f"Unknown stage: {stage}")
