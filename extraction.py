"""Statement-to-transaction extraction through the OpenAI chat API."""

import json
from typing import Any, Callable, Optional

from openai import APIError, OpenAI
from pydantic import ValidationError

from categories import CATEGORIES, CATEGORY_KEYWORDS, FALLBACK_CATEGORY
from config import get_settings
from schemas import ExtractedTransaction


class ExtractionError(RuntimeError):
    """Raised when a statement cannot be turned into transactions."""


def build_system_prompt() -> str:
    keywords = {name: list(words) for name, words in CATEGORY_KEYWORDS.items()}
    return (
        "You are a financial statement parser. Extract transactions from the "
        "following text.\n"
        "Return a JSON object with a 'transactions' array.\n"
        "Each transaction must have: date (ISO string), vendor, amount (number), "
        f"category (one of: {', '.join(CATEGORIES)}), isShared (boolean) and "
        "optionally notes.\n\n"
        "Base categorization on these keywords where possible: "
        f"{json.dumps(keywords, ensure_ascii=False)}.\n"
        f"If unsure, use '{FALLBACK_CATEGORY}'."
    )


def _resolve_openai_client() -> OpenAI:
    settings = get_settings()
    if not settings.openai_api_key:
        raise ExtractionError("Missing OpenAI API key. Set OPENAI_API_KEY.")

    client_kwargs: dict[str, Any] = {
        "api_key": settings.openai_api_key,
        "timeout": settings.extraction_timeout_secs,
    }
    if settings.openai_base_url:
        client_kwargs["base_url"] = settings.openai_base_url
    return OpenAI(**client_kwargs)


def parse_extraction_payload(text: str) -> list[ExtractedTransaction]:
    try:
        payload = json.loads(text or '{"transactions": []}')
    except json.JSONDecodeError as exc:
        raise ExtractionError("Extraction response was not valid JSON") from exc

    rows = payload.get("transactions") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise ExtractionError("Extraction response has no 'transactions' array")

    candidates: list[ExtractedTransaction] = []
    for idx, row in enumerate(rows, start=1):
        try:
            candidates.append(ExtractedTransaction.model_validate(row))
        except ValidationError as exc:
            raise ExtractionError(f"Row {idx}: {exc.errors()[0]['msg']}") from exc
    return candidates


class StatementExtractor:
    def __init__(
        self,
        *,
        client_factory: Optional[Callable[[], OpenAI]] = None,
        model: Optional[str] = None,
    ) -> None:
        self.client_factory = client_factory or _resolve_openai_client
        self.model = model or get_settings().extraction_model

    def extract(self, raw_content: str) -> list[ExtractedTransaction]:
        client = self.client_factory()
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": build_system_prompt()},
                    {"role": "user", "content": raw_content or ""},
                ],
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            raise ExtractionError(f"OpenAI API error: {exc}") from exc

        try:
            text = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:  # pragma: no cover - unexpected SDK output
            raise ExtractionError("Unexpected response format from OpenAI API") from exc

        return parse_extraction_payload(text)
