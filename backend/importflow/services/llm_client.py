"""
Azure OpenAI LLM Service
Reads PDFs for document OCR and answers JSON analysis prompts via Azure AI Foundry
"""
import base64
import json
import re
import time
import logging
from typing import Any, Dict, Optional
from openai import AzureOpenAI
from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from importflow.config import config

logger = logging.getLogger('importflow.llm')

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"

_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


def strip_json_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block"""
    if not text:
        return ''
    return _FENCE_PATTERN.sub('', text.strip()).strip()


def parse_json_response(text: str) -> Any:
    """
    Parse model output as JSON

    Falls back to the first {...} or [...] block when the model wraps
    the payload in prose.

    Raises:
        ValueError: no JSON could be recovered
    """
    cleaned = strip_json_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for pattern in (r'\{[\s\S]*\}', r'\[[\s\S]*\]'):
        match = re.search(pattern, cleaned)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue

    raise ValueError("Model response is not valid JSON")


class LLMService:
    """Service for LLM-based document extraction using Azure OpenAI"""

    def __init__(self):
        if not config.AZURE_OPENAI_ENDPOINT:
            raise ValueError("Azure OpenAI endpoint not configured")
        if not config.AZURE_OPENAI_DEPLOYMENT:
            raise ValueError("Azure OpenAI deployment name not configured")

        # Use API key if provided, otherwise use DefaultAzureCredential (Azure CLI login)
        if config.AZURE_OPENAI_KEY:
            self.client = AzureOpenAI(
                api_key=config.AZURE_OPENAI_KEY,
                api_version=config.AZURE_OPENAI_API_VERSION,
                azure_endpoint=config.AZURE_OPENAI_ENDPOINT
            )
        else:
            # Token provider refreshes the Entra ID token before it expires
            credential = DefaultAzureCredential()
            token_provider = get_bearer_token_provider(credential, COGNITIVE_SERVICES_SCOPE)

            self.client = AzureOpenAI(
                azure_ad_token_provider=token_provider,
                api_version=config.AZURE_OPENAI_API_VERSION,
                azure_endpoint=config.AZURE_OPENAI_ENDPOINT
            )
            self._credential = credential

        self.model = config.AZURE_OPENAI_DEPLOYMENT

    def extract_from_pdf(self, pdf_bytes: bytes, prompt: str, filename: str = 'document.pdf') -> Dict:
        """
        Run one extraction prompt against a PDF

        Args:
            pdf_bytes: Raw PDF content
            prompt: Instruction text (Portuguese extraction prompt)
            filename: Name reported to the model

        Returns:
            Dict with text, usage (input_tokens/output_tokens) and processing_time (ms)
        """
        encoded = base64.b64encode(pdf_bytes).decode('ascii')
        started = time.time()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "file",
                                "file": {
                                    "filename": filename,
                                    "file_data": f"data:application/pdf;base64,{encoded}"
                                }
                            },
                            {"type": "text", "text": prompt}
                        ]
                    }
                ]
            )
        except Exception as e:
            logger.error(f"Error in LLM PDF extraction: {e}")
            raise

        usage = response.usage
        return {
            'text': response.choices[0].message.content or '',
            'usage': {
                'input_tokens': getattr(usage, 'prompt_tokens', 0) if usage else 0,
                'output_tokens': getattr(usage, 'completion_tokens', 0) if usage else 0,
            },
            'processing_time': int((time.time() - started) * 1000),
        }

    def complete_json(self, system_prompt: str, user_prompt: str) -> Dict:
        """Ask for a JSON object answer and return it parsed"""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                response_format={"type": "json_object"}
            )
            return json.loads(response.choices[0].message.content)
        except Exception as e:
            logger.error(f"Error in LLM JSON completion: {e}")
            raise


def get_llm_service() -> Optional[LLMService]:
    """Factory function to get LLM service instance"""
    try:
        return LLMService()
    except Exception as e:
        logger.warning(f"Could not initialize LLM Service: {e}")
        return None
