"""
Multi-Prompt Extraction
Runs the prompt steps of a document type against the LLM in order and
assembles the per-type structuredResult
"""
import io
import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional
from PyPDF2 import PdfReader
from importflow.document_prompts import PromptStep, build_prompt, get_steps
from importflow.services.llm_client import parse_json_response

logger = logging.getLogger('importflow.multi_prompt')

ProgressCallback = Callable[[int, int, str], None]


def count_pdf_pages(pdf_bytes: bytes) -> int:
    """Number of pages; 0 when the PDF cannot be parsed"""
    try:
        return len(PdfReader(io.BytesIO(pdf_bytes)).pages)
    except Exception as e:
        logger.warning(f"Could not count PDF pages: {e}")
        return 0


def _parse_step(text: str) -> Any:
    """Parsed JSON when the step answered with JSON, raw text otherwise"""
    try:
        return parse_json_response(text)
    except ValueError:
        return text


def _section(step_result: Dict, data: Any = None) -> Dict:
    return {
        'data': _parse_step(step_result['result']) if data is None else data,
        'source': f"step_{step_result['step']}",
        'metadata': {
            'stepName': step_result['stepName'],
            'processingTime': step_result['processingTime'],
            'tokenUsage': step_result['tokenUsage'],
        },
    }


# Per-type section names for each step; None means "use the default layout"
_SECTION_LAYOUTS = {
    'swift': ['header'],
    'di': ['header', 'items', 'taxInfo'],
    'numerario': ['diInfo', 'header', 'items'],
    'nota_fiscal': ['header', 'items'],
    'bl': ['header', 'containers'],
    'contrato_cambio': ['header'],
}


def _default_layout(document_type: str, steps: List[Dict]) -> Dict[str, Dict]:
    structured: Dict[str, Dict] = {}
    for step_result in steps:
        number = step_result['step']
        if number == 1:
            structured['header'] = _section(step_result)
        elif number == 2:
            key = 'items' if document_type in ('commercial_invoice', 'proforma_invoice') else 'containers'
            structured[key] = _section(step_result)
        elif number == 3:
            if document_type == 'packing_list':
                structured['disposition_explanation'] = _section(step_result, data=step_result['result'])
            elif document_type == 'commercial_invoice':
                # Enriched items replace the plain list from step 2
                structured['items'] = _section(step_result)
        elif number == 4:
            structured['items'] = _section(step_result)
    return structured


def assemble_structured_result(document_type: str, steps: List[Dict]) -> Dict[str, Dict]:
    layout = _SECTION_LAYOUTS.get(document_type)
    if layout is None:
        return _default_layout(document_type, steps)

    structured = {}
    for step_result in steps:
        index = step_result['step'] - 1
        if index < len(layout):
            structured[layout[index]] = _section(step_result)
    return structured


def extract_with_multiple_prompts(
    pdf_bytes: bytes,
    document_type: str,
    llm,
    on_progress: Optional[ProgressCallback] = None,
    filename: str = 'document.pdf'
) -> Dict[str, Any]:
    """
    Run every prompt step of a document type

    Args:
        pdf_bytes: Raw PDF content
        document_type: Internal type, e.g. 'packing_list'
        llm: LLMService (or anything with extract_from_pdf)
        on_progress: Called as (step, total_steps, step_name) before each step

    Returns:
        Dict with documentType, totalSteps, steps, finalResult and metadata
    """
    prompt_steps: List[PromptStep] = get_steps(document_type)
    total = len(prompt_steps)
    started = time.time()

    logger.info(f"🧩 Multi-prompt extraction: {document_type} ({total} steps)")

    step_results: List[Dict] = []
    previous_result: Optional[str] = None
    input_tokens = 0
    output_tokens = 0

    for prompt_step in prompt_steps:
        if on_progress:
            on_progress(prompt_step.step, total, prompt_step.name)

        logger.info(f"   Step {prompt_step.step}/{total}: {prompt_step.name}")
        prompt = build_prompt(prompt_step, previous_result)
        response = llm.extract_from_pdf(pdf_bytes, prompt, filename)

        usage = response.get('usage') or {}
        input_tokens += usage.get('input_tokens', 0)
        output_tokens += usage.get('output_tokens', 0)

        step_results.append({
            'step': prompt_step.step,
            'stepName': prompt_step.name,
            'stepDescription': prompt_step.description,
            'result': response['text'],
            'tokenUsage': usage,
            'processingTime': response.get('processing_time', 0),
        })
        previous_result = response['text']

    total_time = int((time.time() - started) * 1000)
    token_usage = {
        'input_tokens': input_tokens,
        'output_tokens': output_tokens,
        'total_tokens': input_tokens + output_tokens,
    }

    structured = assemble_structured_result(document_type, step_results)
    structured['processing_summary'] = {
        'totalSteps': total,
        'totalProcessingTime': total_time,
        'tokenUsage': token_usage,
    }

    if document_type == 'swift':
        extracted = structured.get('header', {}).get('data')
    else:
        extracted = {
            key: section['data']
            for key, section in structured.items()
            if key != 'processing_summary'
        }

    raw_text = "\n\n".join(step['result'] for step in step_results if step['result'])
    if not raw_text:
        raw_text = json.dumps(extracted, ensure_ascii=False)

    logger.info(f"✅ Multi-prompt extraction finished in {total_time}ms "
                f"({token_usage['total_tokens']} tokens)")

    return {
        'documentType': document_type,
        'totalSteps': total,
        'steps': step_results,
        'finalResult': {
            'structuredResult': structured,
            'extractedData': extracted,
            'rawText': raw_text,
        },
        'metadata': {
            'totalProcessingTime': total_time,
            'totalTokenUsage': token_usage,
        },
    }


def extract_single_prompt(pdf_bytes: bytes, document_type: str, llm,
                          filename: str = 'document.pdf') -> Dict[str, Any]:
    """
    One-shot extraction (document identification)

    Returns:
        Dict with text, extractedData (parsed JSON or None), totalPages and metadata
    """
    prompt_step = get_steps(document_type)[0]
    response = llm.extract_from_pdf(pdf_bytes, prompt_step.prompt, filename)

    try:
        extracted = parse_json_response(response['text'])
    except ValueError:
        logger.warning(f"Single-prompt {document_type} response was not JSON")
        extracted = None

    return {
        'text': response['text'],
        'extractedData': extracted,
        'totalPages': count_pdf_pages(pdf_bytes),
        'metadata': {
            'processingTime': response.get('processing_time', 0),
            'tokenUsage': response.get('usage') or {},
        },
    }
