"""
Receipt Extraction using Gemini Vision

This service handles:
1. Sending the receipt photo to Gemini with a strict JSON prompt
2. Pulling the JSON object out of the model's reply
3. Normalising the date and computing the overall category
4. Converting the result to our StructuredReceipt model

CRITICAL: The model output is untrusted. Anything that does not parse
into a StructuredReceipt is rejected with ExtractionError; we never guess
a total.

No retries here: the caller reports failure to the user, who can resend
the photo.
"""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from expense_bot.config import GeminiSettings, get_settings
from expense_bot.models.finance import ReceiptItem, StructuredReceipt
from expense_bot.services.errors import ErrorKind, ExtractionError
from expense_bot.services.extraction.interface import ReceiptExtractorInterface
from expense_bot.services.extraction.rules import (
    RECEIPT_CATEGORIES,
    categorize_receipt,
    fix_receipt_date,
    safe_decimal,
)


logger = structlog.get_logger(__name__)


RECEIPT_PROMPT = """Analyze this receipt image and return ONLY valid JSON with the following structure:
{{
  "store_name": "string",
  "date": "YYYY-MM-DD",
  "total": number,
  "service_charge": number,
  "tax": number,
  "discount": number,
  "items": [
    {{
      "name": "string",
      "total": number,
      "quantity": number,
      "category": "{categories}"
    }}
  ]
}}

Rules:
- Use logical categorization for items
- For items, use "total" not "price" - this is the total amount for that line item (not unit price)
- Ensure all amounts are numbers (not strings)
- Date should be in YYYY-MM-DD format, extracted exactly from the receipt
- Look carefully for dates in format DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY and convert to YYYY-MM-DD
- If multiple dates present, use the transaction/purchase date (not printed date)
- If date is unclear or missing, use {today}
- Extract ALL items visible on the receipt
- Look for service charge, service tax, GST, or similar fees (set to 0 if not found)
- Look for discounts, vouchers, promotions (use negative number like -20.00, set to 0 if none)
- Return ONLY the JSON object, no additional text"""


class GeminiReceiptExtractor(ReceiptExtractorInterface):
    """
    Receipt extraction backed by a Gemini vision model.

    BOUNDARIES:
    - ONLY extracts data; never persists anything
    - NEVER invents a total when the model returns none
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key.get_secret_value())
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def extract_receipt(self, image_bytes: bytes) -> StructuredReceipt:
        """Extract structured data from a receipt photo."""
        if not image_bytes:
            raise ExtractionError(ErrorKind.REJECTED, "Empty image")

        today = date.today()
        prompt = RECEIPT_PROMPT.format(
            categories="|".join(RECEIPT_CATEGORIES),
            today=today.isoformat(),
        )

        try:
            response = await self._model.generate_content_async(
                [prompt, {"mime_type": "image/jpeg", "data": image_bytes}]
            )
            text = response.text.strip()
        except google_exceptions.DeadlineExceeded as e:
            raise ExtractionError(ErrorKind.TIMEOUT, str(e))
        except (
            google_exceptions.ServiceUnavailable,
            google_exceptions.ResourceExhausted,
            google_exceptions.InternalServerError,
        ) as e:
            raise ExtractionError(ErrorKind.UNAVAILABLE, str(e))
        except google_exceptions.InvalidArgument as e:
            raise ExtractionError(ErrorKind.REJECTED, str(e))
        except ValueError as e:
            # response.text raises ValueError when the reply was blocked
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, f"No text in model response: {e}")

        logger.debug("gemini_response", preview=text[:200])

        data = self._parse_json(text)
        return self.build_receipt(data, today)

    def _parse_json(self, text: str) -> dict[str, Any]:
        """Find the JSON object in the model reply."""
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, "No JSON found in model response")
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, f"Malformed JSON: {e}")
        if not isinstance(data, dict):
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, "Model response is not an object")
        return data

    @staticmethod
    def build_receipt(data: dict[str, Any], today: Optional[date] = None) -> StructuredReceipt:
        """
        Convert the model's JSON object into a StructuredReceipt.

        Raises:
            ExtractionError: INVALID_RESPONSE if required fields are missing
        """
        total = safe_decimal(data.get("total"))
        if total is None:
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, "Receipt total missing")

        items = []
        for raw in data.get("items") or []:
            if not isinstance(raw, dict):
                continue
            items.append(ReceiptItem(
                name=str(raw.get("name") or "")[:200],
                total=safe_decimal(raw.get("total"), Decimal("0")),
                quantity=abs(safe_decimal(raw.get("quantity"), Decimal("1"))),
                category=str(raw.get("category") or "other").lower(),
            ))

        store_name = str(data.get("store_name") or "").strip() or "Unknown Store"
        discount = safe_decimal(data.get("discount"), Decimal("0"))

        try:
            return StructuredReceipt(
                store_name=store_name[:255],
                receipt_date=fix_receipt_date(data.get("date"), today),
                total=total,
                service_charge=safe_decimal(data.get("service_charge"), Decimal("0")),
                tax=safe_decimal(data.get("tax"), Decimal("0")),
                discount=-abs(discount),
                items=items,
                category=categorize_receipt(store_name, [item.category for item in items]),
            )
        except ValidationError as e:
            raise ExtractionError(ErrorKind.INVALID_RESPONSE, f"Invalid receipt data: {e}")
