"""
NocoDB Table Configuration
Table ids for every document type and the column mappings used to
move extracted document fields in and out of NocoDB

Every mapping reads extracted field name -> NocoDB column.
"""
import os
from typing import Any, Dict, Optional


def _table(name: str, default: str) -> str:
    return os.getenv(f'NOCODB_TABLE_{name}', default)


NOCODB_TABLES: Dict[str, Any] = {
    'DI': {
        'HEADERS': _table('DI_HEADERS', 'm9qiln8qgkcnmef'),
        'ITEMS': _table('DI_ITEMS', 'mqlpl3s0wwm7lo3'),
        'TAX_INFO': _table('DI_TAX_INFO', 'mbjo5merhxuki9p'),
    },
    'COMMERCIAL_INVOICE': {
        'HEADERS': _table('COMMERCIAL_INVOICE_HEADERS', 'mtqwpm79yju1buj'),
        'ITEMS': _table('COMMERCIAL_INVOICE_ITEMS', 'mi6rg0i8prkersd'),
    },
    'PACKING_LIST': {
        'HEADERS': _table('PACKING_LIST_HEADERS', 'm5cyxr0o5pqqfx0'),
        'CONTAINER': _table('PACKING_LIST_CONTAINER', 'mpj2tx2ad68vcqt'),
        'ITEMS': _table('PACKING_LIST_ITEMS', 'm0qyfhv7iih2tqo'),
    },
    'PROFORMA_INVOICE': {
        'HEADERS': _table('PROFORMA_INVOICE_HEADERS', 'mvqdwtl7vyq3k9t'),
        'ITEMS': _table('PROFORMA_INVOICE_ITEMS', 'mccm8hfg71d1ecr'),
    },
    'SWIFT': _table('SWIFT', 'm9w1hyki9w77zd7'),
    'NUMERARIO': _table('NUMERARIO', 'm072re89i8a8nco'),
    'NOTA_FISCAL': {
        'HEADERS': _table('NOTA_FISCAL_HEADERS', 'mby8zu4qlbxe441'),
        'ITEMS': _table('NOTA_FISCAL_ITEMS', 'm62dvz7fghrgbes'),
    },
    'BL': {
        'HEADERS': _table('BL_HEADERS', 'tbl_bl_headers'),
        'CONTAINERS': _table('BL_CONTAINERS', 'tbl_bl_containers'),
    },
    'CONTRATO_CAMBIO': _table('CONTRATO_CAMBIO', 'tbl_contrato_cambio'),
    'DOCUMENT_UPLOADS': _table('DOCUMENT_UPLOADS', 'm6vjb2ircsf2kry'),
    'AUDIT': {
        'DOCUMENT_SAVES': _table('AUDIT_DOCUMENT_SAVES', 'tbl_document_saves'),
    },
    'LOGS': {
        'ETAPA_AUDIT': _table('LOGS_ETAPA_AUDIT', 'tbl_etapa_audit'),
    },
    'PROCESSOS_IMPORTACAO': _table('PROCESSOS_IMPORTACAO', 'mny50szv4gbt195'),
    'PROCESSO_DOCUMENTO_REL': _table('PROCESSO_DOCUMENTO_REL', 'mkdkorw13nh2gd9'),
}


def _identity(*fields: str) -> Dict[str, str]:
    return {field: field for field in fields}


TABLE_FIELD_MAPPINGS: Dict[str, Dict[str, str]] = {
    'PROCESSOS_IMPORTACAO': _identity(
        'numero_processo', 'invoiceNumber', 'numero_di', 'empresa', 'cnpj_empresa',
        'responsavel', 'email_responsavel', 'data_inicio', 'data_conclusao', 'status',
        'etapa', 'valor_total_estimado', 'moeda', 'porto_embarque', 'porto_destino',
        'condicoes_pagamento', 'proforma_invoice_id', 'proforma_invoice_doc_id',
        'descricao', 'documentsPipeline',
    ),

    'PROCESSO_DOCUMENTO_REL': _identity('processo_importacao', 'hash_arquivo_upload'),

    'DI_HEADER': _identity(
        'numero_DI', 'numero_invoice', 'data_registro_DI', 'nome_importador',
        'cnpj_importador', 'nome_adquirente', 'cnpj_adquirente', 'representante_legal_nome',
        'representante_legal_CPF', 'modalidade_despacho', 'quantidade_total_adicoes',
        'recinto_aduaneiro', 'numero_BL', 'numero_CE_Mercante', 'nome_navio',
        'lista_containers', 'data_chegada', 'peso_bruto_total_kg', 'peso_liquido_total_kg',
        'quantidade_total_embalagens', 'taxa_dolar', 'frete_usd', 'seguro_usd',
        'VMLE_usd', 'VMLD_usd', 'tributo_II_recolhido_total', 'tributo_IPI_suspenso_total',
        'tributo_IPI_recolhido_total', 'tributo_PIS_recolhido_total',
        'tributo_COFINS_recolhido_total', 'valor_total_impostos_recolhidos',
    ),

    'DI_ITEM': _identity(
        'numero_di', 'numero_adicao', 'invoice_number', 'ncm_completa', 'codigo_item',
        'descricao_completa_detalhada_produto', 'reference', 'exportador_nome',
        'pais_origem', 'pais_aquisicao', 'incoterm', 'quantidade_produto',
        'unidade_comercial_produto', 'peso_liquido_adicao_kg',
        'valor_unitario_produto_usd', 'valor_total_item_usd',
    ),

    'DI_TAX_ITEM': _identity(
        'invoice_number', 'numero_adicao', 'codigo_item', 'quantidade_item', 'vucv_usd',
        'valor_total_item_usd', 'participacao_percentual_item', 'regime_tributacao_ii',
        'aliquota_ii_percentual', 'valor_ii_recolhido', 'regime_tributacao_ipi',
        'aliquota_ipi_percentual', 'valor_ipi_recolhido', 'base_calculo_pis',
        'aliquota_pis_percentual', 'valor_pis_recolhido', 'base_calculo_cofins',
        'aliquota_cofins_percentual', 'valor_cofins_recolhido', 'valor_total_tributos',
    ),

    'COMMERCIAL_INVOICE_HEADER': {
        'invoice_number': 'invoiceNumber',
        'invoice_date': 'dataFatura',
        'load_port': 'portoEmbarque',
        'destination_port': 'portoDestino',
        'shipper_company': 'nomeExportador',
        'shipper_address': 'enderecoExportador',
        'shipper_tel': 'telefoneExportador',
        'shipper_email': 'emailExportador',
        'consignee_company': 'nomeImportador',
        'consignee_address': 'enderecoImportador',
        'consignee_cnpj': 'cnpjImportador',
        'notify_party_company': 'nomeNotificado',
        'notify_party_cnpj': 'cnpjNotificado',
        'notify_party_address': 'enderecoNotificado',
        'total_amount_usd': 'valorTotalUsd',
        'total_amount_words': 'valorTotalExtenso',
    },

    'COMMERCIAL_INVOICE_ITEM': {
        'invoice_number': 'invoiceNumber',
        'item_number': 'numeroItem',
        'reference': 'referencia',
        'name_chinese': 'nomeChines',
        'name_english': 'nomeIngles',
        'quantity': 'quantidade',
        'unit': 'unidade',
        'unit_price_usd': 'precoUnitarioUsd',
        'amount_usd': 'valorTotalUsd',
        'net_weight': 'pesoLiquido',
        'gross_weight': 'pesoBruto',
    },

    'PACKING_LIST_HEADER': {
        'consignee': 'destinatario',
        'contracted_company': 'empresa_contratada',
        'contracted_email': 'email_contratado',
        'date': 'data',
        'destination': 'destino',
        'invoice': 'invoiceNumber',
        'items_qty_total': 'quantidade_total_itens',
        'load_port': 'porto_embarque',
        'notify_party': 'parte_notificada',
        'package_total': 'total_volumes',
        'total_gw': 'peso_bruto_total',
    },

    'PACKING_LIST_CONTAINER': {
        'booking': 'reserva',
        'container': 'container',
        'from_item': 'item_inicial',
        'from_package': 'pacote_inicial',
        'invoice': 'invoiceNumber',
        'peso_bruto': 'peso_bruto',
        'quantidade_de_pacotes': 'quantidade_volumes',
        'tipo_container': 'tipo_container',
        'to_item': 'item_final',
        'to_package': 'pacote_final',
        'volume': 'volume',
    },

    'PACKING_LIST_ITEM': {
        'altura_pacote': 'altura_pacote',
        'comprimento_pacote': 'comprimento_pacote',
        'container': 'container',
        'descricao_chines': 'descricao_chines',
        'descricao_ingles': 'descricao_ingles',
        'numero_item': 'numero_item',
        'largura_pacote': 'largura_pacote',
        'marcacao_pacote': 'marcacao_do_pacote',
        'peso_bruto_unitario': 'peso_bruto_por_pacote',
        'peso_bruto_total': 'peso_bruto_total',
        'peso_liquido_unitario': 'peso_liquido_por_pacote',
        'peso_liquido_total': 'peso_liquido_total',
        'quantidade_pacotes': 'quantidade_de_pacotes',
        'quantidade_unitaria': 'quantidade_por_pacote',
        'quantidade_total': 'quantidade_total',
        'referencia': 'reference',
    },

    'PROFORMA_INVOICE_HEADER': {
        'contracted_company': 'empresa_contratada',
        'contracted_email': 'email_contratado',
        'invoice_number': 'invoiceNumber',
        'date': 'data_fatura',
        'load_port': 'porto_embarque',
        'destination': 'destino',
        'total_price': 'preco_total',
        'payment_terms': 'condicoes_pagamento',
        'package': 'embalagem',
    },

    'PROFORMA_INVOICE_ITEM': {
        'item_number': 'numero_item',
        'item': 'item',
        'description_in_english': 'descricao_ingles',
        'description_in_chinese': 'descricao_chines',
        'specifications': 'especificacoes',
        'quantity': 'quantidade',
        'unit_price': 'preco_unitario',
        'package': 'embalagem',
    },

    # Applied to the flattened message (see flatten_swift_data)
    'SWIFT': {
        'message_type': 'tipo_mensagem',
        'senders_reference': 'referencia_remetente',
        'transaction_reference': 'referencia_transacao',
        'uetr': 'uetr',
        'bank_operation_code': 'codigo_operacao_bancaria',
        'value_date': 'data_valor',
        'currency': 'moeda',
        'amount': 'valor',
        'fatura': 'invoiceNumber',
        'details_of_charges': 'detalhes_tarifas',
        'remittance_information': 'informacoes_remessa',
        'account_with_institution_bic': 'bic_instituicao_conta',
        'ordering_customer_name': 'cliente_ordenante_nome',
        'ordering_customer_address': 'cliente_ordenante_endereco',
        'ordering_institution_name': 'instituicao_ordenante_nome',
        'ordering_institution_bic': 'instituicao_ordenante_bic',
        'ordering_institution_address': 'instituicao_ordenante_endereco',
        'receiver_institution_name': 'instituicao_receptora_nome',
        'receiver_institution_bic': 'instituicao_receptora_bic',
        'beneficiary_account': 'beneficiario_conta',
        'beneficiary_name': 'beneficiario_nome',
        'beneficiary_address': 'beneficiario_endereco',
    },

    'NUMERARIO': {
        'invoice_number': 'invoiceNumber',
        'di_number': 'numero_di',
        'tipo_documento': 'tipo_documento',
        'data_documento': 'data_documento',
        'cliente_cnpj': 'cnpj_cliente',
        'cliente_nome': 'nome_cliente',
        'cambio_brl': 'taxa_cambio',
        'valor_reais': 'valor_reais',
        'banco': 'banco',
        'conta_destino': 'conta_destino',
        'forma_pagamento': 'forma_pagamento',
        'parcelas': 'parcelas',
        'impostos': 'impostos',
        'taxas': 'taxas',
        'desconto': 'desconto',
        'valor_liquido': 'valor_liquido',
        'vendedor': 'vendedor',
        'comissao': 'comissao',
        'referencia_pedido': 'referencia_pedido',
        'observacoes': 'observacoes',
        'categoria': 'categoria',
        'nf_emitida': 'nf_emitida',
        'numero_nf': 'numero_nf',
        'data_emissao_nf': 'data_emissao_nf',
        'chave_nf': 'chave_nf',
        'created_by': 'criado_por',
        'updated_by': 'atualizado_por',
    },

    'NOTA_FISCAL_HEADER': {
        'invoice_number': 'invoiceNumber',
        'numero_nf': 'numeroNF',
        'serie': 'serie',
        'data_emissao': 'dataEmissao',
        'data_saida': 'dataSaida',
        'hora_saida': 'horaSaida',
        'chave_acesso': 'chaveAcesso',
        'natureza_operacao': 'naturezaOperacao',
        'protocolo_autorizacao': 'protocoloAutorizacao',
        'emitente_razao_social': 'emitenteRazaoSocial',
        'destinatario_razao_social': 'destinatarioRazaoSocial',
        'valor_total_produtos': 'valorTotalProdutos',
        'valor_total_nota': 'valorTotalNota',
        'base_calculo_icms': 'baseCalculoIcms',
        'valor_icms': 'valorIcms',
        'valor_total_ipi': 'valorTotalIpi',
        'valor_frete': 'valorFrete',
        'valor_seguro': 'valorSeguro',
        'desconto': 'desconto',
        'outras_despesas': 'outrasDespesas',
        'frete_por_conta': 'fretePorConta',
        'quantidade_volumes': 'quantidadeVolumes',
        'especie_volumes': 'especieVolumes',
        'peso_bruto': 'pesoBruto',
        'peso_liquido': 'pesoLiquido',
        'informacoes_complementares': 'informacoesComplementares',
        'informacoes_fisco': 'informacoesFisco',
        'di_number': 'diNumber',
    },

    'NOTA_FISCAL_ITEM': {
        'invoice_number': 'invoiceNumber',
        'codigo_produto': 'codigoProduto',
        'descricao_produto': 'descricaoProduto',
        'ncm_sh': 'ncmSh',
        'cfop': 'cfop',
        'unidade': 'unidade',
        'quantidade': 'quantidade',
        'valor_unitario': 'valorUnitario',
        'valor_total_produto': 'valorTotalProduto',
        'base_icms': 'baseIcms',
        'valor_icms_produto': 'valorIcmsProduto',
        'aliquota_icms': 'aliquotaIcms',
        'valor_ipi_produto': 'valorIpiProduto',
        'aliquota_ipi': 'aliquotaIpi',
        'reference': 'reference',
    },

    'BL_HEADER': _identity(
        'bl_number', 'issue_date', 'onboard_date', 'shipper', 'consignee', 'notify_party',
        'cnpj_consignee', 'place_of_receipt', 'port_of_loading', 'port_of_discharge',
        'place_of_delivery', 'freight_term', 'cargo_description', 'ncm_codes',
        'package_type', 'total_packages', 'total_weight_kg', 'total_volume_cbm',
        'freight_value_usd', 'freight_value_brl', 'freight_agent', 'vessel_name',
        'voy_number',
    ),

    'BL_CONTAINER': _identity(
        'bl_number', 'container_number', 'container_size', 'seal_number',
        'booking_number', 'total_packages', 'gross_weight_kg', 'volume_cbm',
    ),

    'CONTRATO_CAMBIO': _identity(
        'contrato', 'data', 'corretora', 'moeda', 'valor_estrangeiro', 'taxa_cambial',
        'valor_nacional', 'fatura', 'recebedor', 'pais', 'endereco', 'conta_bancaria',
        'swift', 'banco_beneficiario',
    ),
}

# Types stored across several tables
_MULTI_TABLE_TYPES = {'DI', 'COMMERCIAL_INVOICE', 'PACKING_LIST', 'PROFORMA_INVOICE', 'NOTA_FISCAL', 'BL'}


def get_table_id(document_type: str, table_type: Optional[str] = None) -> str:
    """
    Resolve the NocoDB table id for a document type

    Args:
        document_type: e.g. 'di', 'commercial_invoice', 'swift'
        table_type: 'HEADERS', 'ITEMS', 'TAX_INFO', 'CONTAINER' or 'CONTAINERS'
            for multi-table types

    Raises:
        ValueError: unknown document type or invalid table type
    """
    upper_type = document_type.upper().replace(' ', '_')

    if upper_type in _MULTI_TABLE_TYPES:
        tables = NOCODB_TABLES[upper_type]
        if not table_type:
            raise ValueError(f"Table type required for {document_type}")
        if table_type not in tables:
            raise ValueError(f"Invalid table type {table_type} for {document_type}")
        return tables[table_type]

    table_id = NOCODB_TABLES.get(upper_type)
    if isinstance(table_id, str):
        return table_id

    raise ValueError(f"Unknown document type: {document_type}")


def transform_to_nocodb(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Rename extracted document fields to NocoDB columns, dropping unmapped keys"""
    return {
        column: data[field]
        for field, column in mapping.items()
        if field in data
    }


def transform_from_nocodb(row: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Rename NocoDB columns back to extracted document fields"""
    reverse = {column: field for field, column in mapping.items()}
    return {
        reverse[column]: value
        for column, value in row.items()
        if column in reverse
    }


_SWIFT_PARTIES = {
    'ordering_customer': ('name', 'address'),
    'ordering_institution': ('name', 'bic', 'address'),
    'receiver_institution': ('name', 'bic'),
    'beneficiary': ('account', 'name', 'address'),
}


def flatten_swift_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn nested SWIFT parties into `<party>_<field>` keys"""
    flat = {key: value for key, value in data.items() if key not in _SWIFT_PARTIES}
    for party, fields in _SWIFT_PARTIES.items():
        nested = data.get(party) or {}
        if not isinstance(nested, dict):
            continue
        for field in fields:
            if field in nested:
                flat[f'{party}_{field}'] = nested[field]
    return flat


def unflatten_swift_data(flat: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild nested SWIFT parties; a party is omitted when all its fields are empty"""
    prefixes = tuple(f'{party}_' for party in _SWIFT_PARTIES)
    result = {key: value for key, value in flat.items() if not key.startswith(prefixes)}
    for party, fields in _SWIFT_PARTIES.items():
        values = {field: flat.get(f'{party}_{field}') for field in fields}
        if any(values.values()):
            result[party] = {field: value or '' for field, value in values.items()}
    return result


# Column stamped on every document row with the sha256 of the source file
SOURCE_HASH_COLUMN = 'hash_arquivo_origem'

# How each document type is stored: header table, child sections keyed by
# their structuredResult name, and the header field used as document id
DOCUMENT_SCHEMAS: Dict[str, Dict[str, Any]] = {
    'proforma_invoice': {
        'header': ('HEADERS', 'PROFORMA_INVOICE_HEADER'),
        'children': {'items': ('ITEMS', 'PROFORMA_INVOICE_ITEM')},
        'key_field': 'invoice_number',
    },
    'commercial_invoice': {
        'header': ('HEADERS', 'COMMERCIAL_INVOICE_HEADER'),
        'children': {'items': ('ITEMS', 'COMMERCIAL_INVOICE_ITEM')},
        'key_field': 'invoice_number',
    },
    'packing_list': {
        'header': ('HEADERS', 'PACKING_LIST_HEADER'),
        'children': {
            'containers': ('CONTAINER', 'PACKING_LIST_CONTAINER'),
            'items': ('ITEMS', 'PACKING_LIST_ITEM'),
        },
        'key_field': 'invoice',
    },
    'di': {
        'header': ('HEADERS', 'DI_HEADER'),
        'children': {
            'items': ('ITEMS', 'DI_ITEM'),
            'taxInfo': ('TAX_INFO', 'DI_TAX_ITEM'),
        },
        'key_field': 'numero_DI',
    },
    'swift': {
        'header': (None, 'SWIFT'),
        'children': {},
        'key_field': 'senders_reference',
        'flatten': True,
    },
    'numerario': {
        'header': (None, 'NUMERARIO'),
        'children': {},
        'key_field': 'invoice_number',
        'merge_di_info': True,
    },
    'nota_fiscal': {
        'header': ('HEADERS', 'NOTA_FISCAL_HEADER'),
        'children': {'items': ('ITEMS', 'NOTA_FISCAL_ITEM')},
        'key_field': 'numero_nf',
    },
    'bl': {
        'header': ('HEADERS', 'BL_HEADER'),
        'children': {'containers': ('CONTAINERS', 'BL_CONTAINER')},
        'key_field': 'bl_number',
    },
    'contrato_cambio': {
        'header': (None, 'CONTRATO_CAMBIO'),
        'children': {},
        'key_field': 'contrato',
    },
}

# Numerário fields that make up its diInfo section
NUMERARIO_DI_INFO_FIELDS = ('di_number', 'invoice_number', 'referencia_pedido')


def get_document_schema(document_type: str) -> Dict[str, Any]:
    """
    Resolve table ids and mappings for a document type

    Returns:
        Dict with header_table, header_mapping, children
        [(section, table_id, mapping)], key_field, flatten, merge_di_info

    Raises:
        ValueError: the type has no storage schema
    """
    schema = DOCUMENT_SCHEMAS.get(document_type)
    if schema is None:
        raise ValueError(f"Unknown document type: {document_type}")

    header_table_type, header_mapping = schema['header']
    return {
        'header_table': get_table_id(document_type, header_table_type),
        'header_mapping': TABLE_FIELD_MAPPINGS[header_mapping],
        'children': [
            (section, get_table_id(document_type, table_type), TABLE_FIELD_MAPPINGS[mapping])
            for section, (table_type, mapping) in schema['children'].items()
        ],
        'key_field': schema['key_field'],
        'flatten': schema.get('flatten', False),
        'merge_di_info': schema.get('merge_di_info', False),
    }
