"""
Document Extraction Prompts
Portuguese prompt steps sent to the LLM for every supported trade document

Field names asked for in each prompt match the keys of TABLE_FIELD_MAPPINGS,
so step output can be saved to NocoDB without renaming.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

JSON_ONLY = (
    "Entregue um json válido e puro. A resposta deve ser apenas o json e sem sequer "
    "a informação de que é um json."
)

PREVIOUS_RESULT_LABEL = "Informação do módulo anterior"


@dataclass(frozen=True)
class PromptStep:
    step: int
    name: str
    description: str
    prompt: str
    expects_input: bool = False

    def to_dict(self) -> Dict:
        return {
            'step': self.step,
            'name': self.name,
            'description': self.description,
            'prompt': self.prompt,
            'expectsInput': self.expects_input,
        }


def _fields(*names: str) -> str:
    return "\n".join(f"- {name}" for name in names)


# ---------------------------------------------------------------------------
# Bill of Lading
# ---------------------------------------------------------------------------

BL_HEADER_PROMPT = f"""Você é um especialista em conhecimentos de embarque marítimo (Bill of Lading).
Extraia do documento os dados gerais do BL e devolva um único objeto JSON com os campos:

{_fields(
    'bl_number', 'issue_date (DD/MM/AAAA)', 'onboard_date (DD/MM/AAAA)', 'shipper', 'consignee',
    'notify_party', 'cnpj_consignee', 'place_of_receipt', 'port_of_loading', 'port_of_discharge',
    'place_of_delivery', 'freight_term (PREPAID ou COLLECT)', 'cargo_description', 'ncm_codes',
    'package_type', 'total_packages', 'total_weight_kg', 'total_volume_cbm', 'freight_value_usd',
    'freight_value_brl', 'freight_agent', 'vessel_name', 'voy_number',
)}

Regras:
- Valores numéricos sem separador de milhar e com ponto decimal.
- ncm_codes é uma lista separada por vírgula quando houver mais de um código.
- Use null para campos não encontrados.

{JSON_ONLY}"""

BL_CONTAINERS_PROMPT = f"""Com base no BL e nos dados gerais já extraídos, liste todos os contêineres do documento.
Devolva um array JSON, um objeto por contêiner, com os campos:

{_fields(
    'container_number (4 letras e 7 dígitos)', 'container_size (ex: 40HC)', 'seal_number',
    'booking_number', 'total_packages', 'gross_weight_kg', 'volume_cbm', 'bl_number',
)}

Repita o bl_number dos dados gerais em todos os contêineres.

{JSON_ONLY}"""

BL_STEPS = [
    PromptStep(1, 'Dados Gerais do BL', 'Extraindo cabeçalho do Bill of Lading', BL_HEADER_PROMPT),
    PromptStep(2, 'Contêineres', 'Extraindo contêineres do BL', BL_CONTAINERS_PROMPT, expects_input=True),
]


# ---------------------------------------------------------------------------
# Commercial Invoice
# ---------------------------------------------------------------------------

COMMERCIAL_INVOICE_HEADER_PROMPT = f"""Extraia os dados de cabeçalho desta Commercial Invoice.
Devolva um objeto JSON com os campos:

{_fields(
    'invoice_number', 'invoice_date (DD/MM/AAAA)', 'load_port', 'destination_port',
    'shipper_company', 'shipper_address', 'shipper_tel', 'shipper_email',
    'consignee_company', 'consignee_address', 'consignee_cnpj',
    'notify_party_company', 'notify_party_cnpj', 'notify_party_address',
    'total_amount_usd', 'total_amount_words',
)}

Use null para campos não encontrados.

{JSON_ONLY}"""

COMMERCIAL_INVOICE_ITEMS_PROMPT = f"""Extraia TODOS os itens da tabela de produtos desta Commercial Invoice.
Devolva um array JSON, um objeto por linha, com os campos:

{_fields(
    'invoice_number', 'item_number', 'reference', 'name_chinese', 'name_english',
    'quantity', 'unit', 'unit_price_usd', 'amount_usd',
)}

Regras:
- Quando uma referência aparece uma única vez para um grupo de linhas, repita a
  mesma reference em todas as linhas do grupo.
- Não pule linhas, mesmo quando a descrição se repete.

{JSON_ONLY}"""

COMMERCIAL_INVOICE_ENRICH_PROMPT = f"""Você recebeu a lista de itens já extraída desta Commercial Invoice.
Revise o documento e complete cada item com os pesos quando estiverem disponíveis:

{_fields('net_weight', 'gross_weight')}

Mantenha todos os campos existentes e a mesma ordem dos itens. Devolva o array JSON completo.

{JSON_ONLY}"""

COMMERCIAL_INVOICE_STEPS = [
    PromptStep(1, 'Cabeçalho', 'Extraindo dados gerais da Commercial Invoice', COMMERCIAL_INVOICE_HEADER_PROMPT),
    PromptStep(2, 'Itens', 'Extraindo itens da Commercial Invoice', COMMERCIAL_INVOICE_ITEMS_PROMPT),
    PromptStep(3, 'Enriquecimento dos Itens', 'Completando pesos dos itens',
               COMMERCIAL_INVOICE_ENRICH_PROMPT, expects_input=True),
]


# ---------------------------------------------------------------------------
# Proforma Invoice
# ---------------------------------------------------------------------------

PROFORMA_HEADER_PROMPT = f"""Extraia os dados de cabeçalho desta Proforma Invoice.
Devolva um objeto JSON com os campos:

{_fields(
    'contracted_company', 'contracted_email', 'invoice_number', 'date (DD/MM/YYYY)',
    'load_port', 'destination', 'total_price', 'payment_terms', 'package',
)}

total_price é numérico, sem símbolo de moeda.

{JSON_ONLY}"""

PROFORMA_ITEMS_PROMPT = f"""Extraia TODOS os itens desta Proforma Invoice.
Devolva um array JSON, um objeto por item, com os campos:

{_fields(
    'item_number', 'item', 'description_in_english', 'description_in_chinese',
    'specifications', 'quantity', 'unit_price', 'package',
)}

{JSON_ONLY}"""

PROFORMA_INVOICE_STEPS = [
    PromptStep(1, 'Cabeçalho', 'Extraindo dados gerais da Proforma Invoice', PROFORMA_HEADER_PROMPT),
    PromptStep(2, 'Itens', 'Extraindo itens da Proforma Invoice', PROFORMA_ITEMS_PROMPT),
]


# ---------------------------------------------------------------------------
# Packing List
# ---------------------------------------------------------------------------

PACKING_LIST_HEADER_PROMPT = f"""Extraia os dados gerais deste Packing List.
Devolva um objeto JSON com os campos:

{_fields(
    'invoice', 'consignee', 'notify_party', 'date', 'load_port', 'destination',
    'contracted_company', 'contracted_email', 'package_total', 'items_qty_total', 'total_gw',
)}

{JSON_ONLY}"""

PACKING_LIST_CONTAINERS_PROMPT = f"""Identifique todos os contêineres deste Packing List e a faixa de pacotes e itens de cada um.
Devolva um array JSON com os campos:

{_fields(
    'container', 'booking', 'tipo_container', 'quantidade_de_pacotes', 'peso_bruto', 'volume',
    'from_package', 'to_package', 'from_item', 'to_item', 'invoice',
)}

{JSON_ONLY}"""

PACKING_LIST_DISPOSITION_PROMPT = """Com base nos contêineres identificados, explique em texto corrido como os pacotes e
itens estão distribuídos entre eles. Indique para cada contêiner quais pacotes e quais
itens ele contém, e aponte itens divididos entre mais de um contêiner.

Responda apenas com a explicação, sem JSON."""

PACKING_LIST_ITEMS_PROMPT = f"""Use a explicação da distribuição para listar cada item com o contêiner em que está.
Devolva um array JSON, um objeto por item e contêiner, com os campos:

{_fields(
    'container', 'numero_item', 'referencia', 'descricao_ingles', 'descricao_chines',
    'quantidade_pacotes', 'quantidade_unitaria', 'quantidade_total', 'peso_liquido_unitario',
    'peso_liquido_total', 'peso_bruto_unitario', 'peso_bruto_total', 'marcacao_pacote',
    'comprimento_pacote', 'largura_pacote', 'altura_pacote',
)}

{JSON_ONLY}"""

PACKING_LIST_STEPS = [
    PromptStep(1, 'Extração de Dados Gerais', 'Extraindo cabeçalho do Packing List', PACKING_LIST_HEADER_PROMPT),
    PromptStep(2, 'Identificação de Contêineres', 'Identificando contêineres e faixas',
               PACKING_LIST_CONTAINERS_PROMPT, expects_input=True),
    PromptStep(3, 'Explicação da Disposição', 'Explicando a distribuição dos itens',
               PACKING_LIST_DISPOSITION_PROMPT, expects_input=True),
    PromptStep(4, 'Distribuição Final', 'Distribuindo itens por contêiner',
               PACKING_LIST_ITEMS_PROMPT, expects_input=True),
]


# ---------------------------------------------------------------------------
# SWIFT
# ---------------------------------------------------------------------------

SWIFT_PROMPT = f"""Extraia os dados desta mensagem SWIFT (MT103) e devolva exatamente esta estrutura JSON:

{{
  "message_type": "MT103",
  "senders_reference": "",
  "transaction_reference": "",
  "uetr": "",
  "bank_operation_code": "",
  "value_date": "DD/MM/AAAA",
  "currency": "",
  "amount": "",
  "ordering_customer": {{"name": "", "address": ""}},
  "ordering_institution": {{"name": "", "bic": "", "address": ""}},
  "account_with_institution_bic": "",
  "receiver_institution": {{"name": "", "bic": ""}},
  "beneficiary": {{"account": "", "name": "", "address": ""}},
  "remittance_information": "",
  "fatura": "",
  "details_of_charges": ""
}}

fatura é o número da invoice citado no campo 70 (remittance information).

{JSON_ONLY}"""

SWIFT_STEPS = [
    PromptStep(1, 'Mensagem SWIFT', 'Extraindo dados da transferência', SWIFT_PROMPT),
]


# ---------------------------------------------------------------------------
# Declaração de Importação
# ---------------------------------------------------------------------------

DI_HEADER_PROMPT = f"""Extraia os dados gerais desta Declaração de Importação (DI).
Devolva um objeto JSON com os campos:

{_fields(
    'numero_DI', 'numero_invoice', 'data_registro_DI', 'nome_importador', 'cnpj_importador',
    'nome_adquirente', 'cnpj_adquirente', 'representante_legal_nome', 'representante_legal_CPF',
    'modalidade_despacho', 'quantidade_total_adicoes', 'recinto_aduaneiro', 'numero_BL',
    'numero_CE_Mercante', 'nome_navio', 'lista_containers', 'data_chegada',
    'peso_bruto_total_kg', 'peso_liquido_total_kg', 'quantidade_total_embalagens', 'taxa_dolar',
    'frete_usd', 'seguro_usd', 'VMLE_usd', 'VMLD_usd', 'tributo_II_recolhido_total',
    'tributo_IPI_suspenso_total', 'tributo_IPI_recolhido_total', 'tributo_PIS_recolhido_total',
    'tributo_COFINS_recolhido_total', 'valor_total_impostos_recolhidos',
)}

numero_invoice está nos dados complementares, depois de "FATURA".

{JSON_ONLY}"""

DI_ITEMS_PROMPT = f"""Extraia todos os itens de todas as adições desta DI.
Devolva um array JSON com os campos:

{_fields(
    'numero_di', 'numero_adicao', 'invoice_number', 'ncm_completa', 'codigo_item',
    'descricao_completa_detalhada_produto', 'reference', 'exportador_nome', 'pais_origem',
    'pais_aquisicao', 'incoterm', 'quantidade_produto', 'unidade_comercial_produto',
    'peso_liquido_adicao_kg', 'valor_unitario_produto_usd', 'valor_total_item_usd',
)}

{JSON_ONLY}"""

DI_TAX_PROMPT = f"""Para cada item recebido, calcule e extraia as informações tributárias da adição correspondente.
Devolva um array JSON com os campos:

{_fields(
    'invoice_number', 'numero_adicao', 'codigo_item', 'quantidade_item', 'vucv_usd',
    'valor_total_item_usd', 'participacao_percentual_item', 'regime_tributacao_ii',
    'aliquota_ii_percentual', 'valor_ii_recolhido', 'regime_tributacao_ipi',
    'aliquota_ipi_percentual', 'valor_ipi_recolhido', 'base_calculo_pis',
    'aliquota_pis_percentual', 'valor_pis_recolhido', 'base_calculo_cofins',
    'aliquota_cofins_percentual', 'valor_cofins_recolhido', 'valor_total_tributos',
)}

participacao_percentual_item é a fração do valor do item no total da adição.

{JSON_ONLY}"""

DI_STEPS = [
    PromptStep(1, 'Dados Gerais da DI', 'Extraindo cabeçalho da DI', DI_HEADER_PROMPT),
    PromptStep(2, 'Itens da DI', 'Extraindo itens das adições', DI_ITEMS_PROMPT),
    PromptStep(3, 'Informações Tributárias', 'Extraindo tributos por item', DI_TAX_PROMPT, expects_input=True),
]


# ---------------------------------------------------------------------------
# Numerário
# ---------------------------------------------------------------------------

NUMERARIO_DI_PROMPT = f"""Este documento é um fechamento financeiro ou prestação de contas de importação.
Localize a DI e a invoice a que ele se refere e devolva um objeto JSON com os campos:

{_fields('di_number', 'invoice_number', 'referencia_pedido')}

{JSON_ONLY}"""

NUMERARIO_HEADER_PROMPT = f"""Extraia os seguintes campos do fechamento financeiro / prestação de contas.
Devolva um objeto JSON com os campos:

{_fields(
    'invoice_number', 'tipo_documento', 'data_documento', 'cliente_cnpj', 'cliente_nome',
    'cambio_brl', 'valor_reais', 'banco', 'conta_destino', 'forma_pagamento', 'parcelas',
    'impostos', 'taxas', 'desconto', 'valor_liquido', 'vendedor', 'comissao',
    'referencia_pedido', 'observacoes', 'categoria', 'nf_emitida (true/false)', 'numero_nf',
    'data_emissao_nf', 'chave_nf',
)}

Use null para campos não encontrados.

{JSON_ONLY}"""

NUMERARIO_ITEMS_PROMPT = f"""Liste cada despesa do fechamento financeiro.
Devolva um array JSON com os campos:

{_fields('descricao', 'valor', 'categoria')}

{JSON_ONLY}"""

NUMERARIO_STEPS = [
    PromptStep(1, 'Extração do Número da DI', 'Identificando DI e invoice', NUMERARIO_DI_PROMPT),
    PromptStep(2, 'Dados Gerais', 'Extraindo dados do fechamento financeiro', NUMERARIO_HEADER_PROMPT),
    PromptStep(3, 'Despesas', 'Extraindo despesas', NUMERARIO_ITEMS_PROMPT),
]


# ---------------------------------------------------------------------------
# Nota Fiscal
# ---------------------------------------------------------------------------

NOTA_FISCAL_HEADER_PROMPT = f"""Extraia os dados gerais desta Nota Fiscal Eletrônica e devolva um objeto JSON.
Mantenha os valores exatamente como aparecem no documento. Campos:

{_fields(
    'invoice_number', 'numero_nf', 'serie', 'data_emissao', 'data_saida', 'hora_saida',
    'chave_acesso', 'natureza_operacao', 'protocolo_autorizacao', 'emitente_razao_social',
    'destinatario_razao_social', 'valor_total_produtos', 'valor_total_nota', 'base_calculo_icms',
    'valor_icms', 'valor_total_ipi', 'valor_frete', 'valor_seguro', 'desconto', 'outras_despesas',
    'frete_por_conta', 'quantidade_volumes', 'especie_volumes', 'peso_bruto', 'peso_liquido',
    'informacoes_complementares', 'informacoes_fisco', 'di_number',
)}

invoice_number é o número da Fatura citado nas informações complementares.
di_number também costuma estar nas informações complementares.

{JSON_ONLY}"""

NOTA_FISCAL_ITEMS_PROMPT = f"""Extraia APENAS os produtos desta Nota Fiscal Eletrônica.
Devolva um array JSON, um objeto por produto, com os campos:

{_fields(
    'invoice_number', 'codigo_produto', 'descricao_produto', 'ncm_sh', 'cfop', 'unidade',
    'quantidade', 'valor_unitario', 'valor_total_produto', 'base_icms', 'valor_icms_produto',
    'aliquota_icms', 'valor_ipi_produto', 'aliquota_ipi', 'reference',
)}

{JSON_ONLY}"""

NOTA_FISCAL_STEPS = [
    PromptStep(1, 'Header', 'Extraindo dados gerais da Nota Fiscal', NOTA_FISCAL_HEADER_PROMPT),
    PromptStep(2, 'Items', 'Extraindo todos os produtos/itens da Nota Fiscal',
               NOTA_FISCAL_ITEMS_PROMPT, expects_input=True),
]


# ---------------------------------------------------------------------------
# Contrato de Câmbio
# ---------------------------------------------------------------------------

CONTRATO_CAMBIO_PROMPT = f"""Extraia os dados deste contrato de câmbio e devolva um objeto JSON com os campos:

{_fields(
    'contrato', 'data', 'corretora', 'moeda', 'valor_estrangeiro', 'taxa_cambial',
    'valor_nacional', 'fatura', 'recebedor', 'pais', 'endereco', 'conta_bancaria', 'swift',
    'banco_beneficiario',
)}

{JSON_ONLY}"""

CONTRATO_CAMBIO_STEPS = [
    PromptStep(1, 'Contrato de Câmbio', 'Extraindo dados do contrato', CONTRATO_CAMBIO_PROMPT),
]


# ---------------------------------------------------------------------------
# Identification of unknown documents
# ---------------------------------------------------------------------------

DOCUMENT_IDENTIFICATION_PROMPT = """Você é um classificador de DOCUMENTOS DE IMPORTAÇÃO.
Compare o texto com a tabela abaixo e escolha o tipo e o próximo módulo:

| Palavra-chave principal  | tipo                | proximo_modulo             |
|--------------------------|---------------------|----------------------------|
| PROFORMA INVOICE         | PROFORMA_INVOICE    | extrair_proforma           |
| CONTRATO DE CAMBIO       | CONTRATO_CAMBIO     | extrair_contrato_cambio    |
| COMPROVANTE DE PAGAMENTO | COMPROVANTE_CAMBIO  | extrair_comprovante_cambio |
| SWIFT                    | SWIFT               | extrair_swift              |
| PACKING LIST             | PACKING_LIST        | extrair_packing_list       |
| COMMERCIAL INVOICE       | COMMERCIAL_INVOICE  | extrair_commercial_inv     |
| BILL OF LADING           | BILL_OF_LADING      | extrair_bl                 |
| NOTA FISCAL TRADING      | NOTA_FISCAL_TRADING | extrair_nf_trading         |
| DECLARACAO DE IMPORTACAO | DI                  | extrair_di                 |
| NUMERÁRIO                | NUMERARIO           | extrair_numerario          |

"Solicitação numerário", "Fechamento Financeiro", "Prestação de contas" e
"Relação das despesas" são todos NUMERARIO.

Se nada casar: tipo = DESCONHECIDO e proximo_modulo = fila_manual.

document_number deve conter SEMPRE o número da INVOICE/FATURA citado no documento
(padrões "INVOICE NO", "INV NO", "FATURA NO"), nunca o número do BL, da DI ou do contrato.
Para CONTRATO_CAMBIO: document_number = null e has_invoice_number = false.

resumo tem no máximo 200 caracteres: tipo de documento, empresa principal, valor e data.

Retorne exatamente esta estrutura:
{
"tipo": "<TIPO>",
"proximo_modulo": "<MODULO>",
"document_number": "<NUMERO_DA_INVOICE|null>",
"has_invoice_number": <true|false>,
"resumo": "<RESUMO>",
"data": "<DATA>"
}

IMPORTANTE: Entregue somente o JSON totalmente puro, sem comentários e nem indicação de que seja JSON."""

UNKNOWN_STEPS = [
    PromptStep(1, 'Identificação', 'Identificando o tipo do documento', DOCUMENT_IDENTIFICATION_PROMPT),
]


DOCUMENT_STEPS: Dict[str, List[PromptStep]] = {
    'bl': BL_STEPS,
    'commercial_invoice': COMMERCIAL_INVOICE_STEPS,
    'proforma_invoice': PROFORMA_INVOICE_STEPS,
    'packing_list': PACKING_LIST_STEPS,
    'swift': SWIFT_STEPS,
    'di': DI_STEPS,
    'numerario': NUMERARIO_STEPS,
    'nota_fiscal': NOTA_FISCAL_STEPS,
    'contrato_cambio': CONTRATO_CAMBIO_STEPS,
    'unknown': UNKNOWN_STEPS,
}

# Identification label (tipo) -> internal document type
DOCUMENT_TYPE_MAPPING: Dict[str, str] = {
    'PROFORMA_INVOICE': 'proforma_invoice',
    'COMMERCIAL_INVOICE': 'commercial_invoice',
    'PACKING_LIST': 'packing_list',
    'SWIFT': 'swift',
    'DI': 'di',
    'NUMERARIO': 'numerario',
    'NOTA_FISCAL_TRADING': 'nota_fiscal',
    'BILL_OF_LADING': 'bl',
    'CONTRATO_CAMBIO': 'contrato_cambio',
    'COMPROVANTE_CAMBIO': 'other',
    'DESCONHECIDO': 'unknown',
}


def get_steps(document_type: str) -> List[PromptStep]:
    """
    Prompt steps for a document type

    Raises:
        ValueError: no prompts exist for the type
    """
    steps = DOCUMENT_STEPS.get(document_type)
    if steps is None:
        raise ValueError(f"No prompts configured for document type: {document_type}")
    return steps


def get_step(document_type: str, step: int) -> Optional[PromptStep]:
    for prompt_step in get_steps(document_type):
        if prompt_step.step == step:
            return prompt_step
    return None


def build_prompt(prompt_step: PromptStep, previous_result: Optional[str] = None) -> str:
    """Append the previous step's output to steps that consume it"""
    if prompt_step.expects_input and previous_result:
        return f"{prompt_step.prompt}\n\n{PREVIOUS_RESULT_LABEL}: {previous_result}"
    return prompt_step.prompt


def map_identified_type(label: Optional[str]) -> str:
    """Internal type for an identification label; unknown labels map to 'unknown'"""
    if not label:
        return 'unknown'
    return DOCUMENT_TYPE_MAPPING.get(label.strip().upper(), 'unknown')
