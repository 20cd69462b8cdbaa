"""Page extraction using an OpenAI-compatible API."""

import base64
import json
import logging
import re
import time
from typing import Any, Callable, Optional

import openai
from openai import OpenAI

from ..errors import ExtractionError, MalformedResponseError, UpstreamError
from ..models import ExtractionResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 503)

EXTRACTION_PROMPT = """Extract ALL line items from this EOB (Explanation of Benefits) or payment document page.

Classify each item with line_type:
- "medical_service": a standard claim service line (CPT/HCPCS code, date of service, billed/allowed/paid amounts)
- "incentive_bonus": MIPS or other quality incentive payments (no procedure code; use cpt_code "MIPS_BONUS")
- "adjustment": payment adjustments not tied to a service line
- "summary_total": a check or EFT total (one per payment; cpt_code "SUMMARY", remark_code = check or trace number,
  cpt_description "Check Total" or "EFT Total")

Return a JSON object with an "items" array. Each item has these fields (null when not present):
line_type, patient_name, member_id, date_of_service (YYYY-MM-DD), cpt_code, cpt_description,
billed_amount, allowed_amount, paid_amount, patient_responsibility, adjustment_amount,
deductible_amount, coinsurance_amount, copay_amount, contractual_adjustment, non_covered_amount,
rendering_provider_npi, remark_code (e.g. "CO-45", "PR-1"), remark_reason, claim_status
("Paid", "Denied", "Adjusted", "Partially Paid", "Incentive Paid" or "Summary"), claim_number,
payment_date (YYYY-MM-DD), payer_name, payer_id, confidence_score (0-100).

Carry header values (patient, member ID, provider NPI, payer, payment date, claim number) down to every item
on the page. Amounts are numbers without dollar signs or commas. Extract every line; do not double-count
the summary total. If the page has no extractable data, return {"items": []}.

Respond with ONLY the JSON object."""


class ExtractionClient:
    """Client for per-page extraction against an OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_name: str = "gemini-2.0-flash",
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_base_sec: float = 10.0,
        retry_multiplier: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
        client: Optional[OpenAI] = None,
    ):
        """Initialize extraction client.

        Args:
            api_url: Base URL for the OpenAI-compatible API
            api_key: API key for the endpoint
            model_name: Model name to use for extraction
            timeout: Per-call timeout in seconds
            max_retries: Retries on 429/503 (total calls = max_retries + 1)
            retry_base_sec: First backoff delay
            retry_multiplier: Backoff growth per retry
            sleep: Sleep function (injectable for tests)
            client: Pre-built OpenAI client (injectable for tests)
        """
        # Retries are handled here so the Retry-After hint and bounds are ours
        self.client = client or OpenAI(
            base_url=api_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        self.model_name = model_name
        self.max_retries = max_retries
        self.retry_base_sec = retry_base_sec
        self.retry_multiplier = retry_multiplier
        self._sleep = sleep
        logger.info(f"Extraction client initialized with model: {model_name}")

    def extract_page(self, page_bytes: bytes, page_number: Optional[int] = None) -> ExtractionResponse:
        """Extract raw line items from one PDF page.

        Args:
            page_bytes: Single-page PDF
            page_number: Page number (for logging)

        Returns:
            ExtractionResponse: Raw item dicts, response type and audit payload

        Raises:
            UpstreamError: Service error (retryable=True after exhausting 429/503 retries)
            MalformedResponseError: Response content is not the expected JSON
            ExtractionError: Connection or timeout failure
        """
        completion = self._call_with_retry(page_bytes, page_number)
        raw = completion.model_dump(mode="json")

        content = None
        if completion.choices:
            content = completion.choices[0].message.content
        if not content or not content.strip():
            logger.info(f"No content returned for page {page_number}, likely a cover or blank page")
            return ExtractionResponse(items=[], response_type="no_candidates", raw=raw)

        try:
            data = json.loads(self._extract_json(content.strip()))
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Extraction response is not valid JSON: {e}") from e

        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = data.get("items") or data.get("line_items") or []
        else:
            raise MalformedResponseError(f"Unexpected extraction payload type: {type(data).__name__}")

        if not isinstance(items, list):
            raise MalformedResponseError("Extraction payload 'items' is not a list")

        logger.info(f"Extracted {len(items)} raw items from page {page_number}")
        return ExtractionResponse(
            items=items,
            response_type="items_found" if items else "empty_items_array",
            raw=raw,
        )

    def _call_with_retry(self, page_bytes: bytes, page_number: Optional[int]):
        encoded = base64.b64encode(page_bytes).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": EXTRACTION_PROMPT},
                {
                    "type": "file",
                    "file": {
                        "filename": f"page-{page_number or 0:03d}.pdf",
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                },
            ],
        }]

        for attempt in range(self.max_retries + 1):
            try:
                return self.client.chat.completions.create(
                    model=self.model_name,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0.1,
                    max_tokens=4096,
                )
            except openai.APIStatusError as e:
                status = e.status_code
                if status not in RETRYABLE_STATUS_CODES:
                    logger.error(f"Extraction API error for page {page_number}: HTTP {status}: {e.message}")
                    raise UpstreamError(f"Extraction API error: HTTP {status}: {e.message}", status_code=status) from e

                if attempt == self.max_retries:
                    logger.error(f"Extraction API {status} for page {page_number}, retries exhausted")
                    raise UpstreamError(
                        f"Extraction API error: HTTP {status} after {attempt + 1} attempts",
                        status_code=status,
                        retryable=True,
                    ) from e

                delay = max(self.backoff_delay(attempt), self._retry_after(e))
                logger.warning(
                    f"Extraction API {status} on page {page_number} "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.1f}s"
                )
                self._sleep(delay)
            except (openai.APIConnectionError, openai.APITimeoutError) as e:
                raise ExtractionError(f"Extraction API unreachable: {e}") from e

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff for the given 0-based retry attempt."""
        return self.retry_base_sec * (self.retry_multiplier ** attempt)

    @staticmethod
    def _retry_after(error: openai.APIStatusError) -> float:
        headers = getattr(error.response, "headers", None) or {}
        value: Any = headers.get("retry-after") or headers.get("Retry-After")
        if value is None:
            return 0.0
        try:
            return max(float(value), 0.0)
        except (TypeError, ValueError):
            return 0.0

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown code blocks or thinking tags.

        Args:
            text: Response text that may contain JSON

        Returns:
            str: Cleaned JSON string
        """
        if '<think>' in text or '</think>' in text:
            text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL).strip()

        if '```' in text:
            json_match = re.search(r'```(?:json)?\s*([\[{].*?[\]}])\s*```', text, re.DOTALL)
            if json_match:
                return json_match.group(1)

        if not text.startswith(('{', '[')):
            json_match = re.search(r'\{.*\}', text, re.DOTALL)
            if json_match:
                return json_match.group(0)

        return text
