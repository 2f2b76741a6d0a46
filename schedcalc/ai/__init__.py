import json
import logging
import os
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence

from huggingface_hub import InferenceClient

from schedcalc.core.categories import SCHEDULE_C_CATEGORIES, categories_prompt_block
from schedcalc.core.errors import (
    ClassifierError,
    ClassifierMalformedResponse,
    ClassifierUnavailable,
)
from schedcalc.core.models import Classification, Transaction

logger = logging.getLogger(__name__)

_OLLAMA_URL = "http://localhost:11434/api/chat"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"
_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

BATCH_TIMEOUT = 60
SINGLE_TIMEOUT = 30


class LLMProvider(Protocol):
    """A minimal protocol all concrete providers must implement."""

    def generate(self, messages: List[dict], timeout: float | None = None) -> str:
        """Return the model reply given a list-of-dicts chat history."""


@dataclass
class LLMClient:
    """Simple client that delegates chat requests to an LLM provider."""
    provider: LLMProvider | None = None

    def __post_init__(self) -> None:
        if self.provider is None:
            self.provider = get_provider_from_env()

    def chat(self, messages: List[dict], timeout: float | None = None) -> str:
        return self.provider.generate(messages, timeout=timeout)


# -----------------------------------------------------------------------------
# Providers
# -----------------------------------------------------------------------------

def _post_json(url: str, payload: dict, headers: Dict[str, str], timeout: float | None) -> dict:
    data = json.dumps(payload).encode()
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        req.add_header(key, value)
    logger.debug("LLM ▶ POST %s", url)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode()
    except urllib.error.HTTPError as e:
        body = e.read().decode(errors="replace")
        raise ClassifierUnavailable(f"LLM API error {e.code}: {body}") from e
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise ClassifierUnavailable(f"Failed to reach {url}: {e}") from e
    logger.debug("LLM ◀ %s", raw)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ClassifierMalformedResponse(f"LLM API returned invalid JSON: {e}") from e


def _first_choice(resp_data: dict) -> str:
    choices = resp_data.get("choices") or []
    if not choices:
        raise ClassifierMalformedResponse("No response from LLM")
    return (choices[0].get("message", {}).get("content") or "").strip()


@dataclass
class OpenAIProvider:
    """Chat Completions over plain HTTP; also serves OpenAI-compatible gateways."""
    model: str
    api_key: str
    url: str = _OPENAI_URL
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def generate(self, messages: List[dict], timeout: float | None = None) -> str:
        payload = {"model": self.model, "messages": messages}
        headers = {"Authorization": f"Bearer {self.api_key}", **self.extra_headers}
        return _first_choice(_post_json(self.url, payload, headers, timeout))


@dataclass
class OpenRouterProvider(OpenAIProvider):
    url: str = _OPENROUTER_URL
    extra_headers: Dict[str, str] = field(
        default_factory=lambda: {"X-Title": "Schedule C Calculator"}
    )


@dataclass
class HuggingFaceProvider:
    model: str
    token: str | None = None
    timeout: float | None = BATCH_TIMEOUT

    def __post_init__(self) -> None:
        self._client = InferenceClient(provider="cerebras", api_key=self.token, timeout=self.timeout)

    def generate(self, messages: List[dict], timeout: float | None = None) -> str:
        # The per-call timeout is fixed when the InferenceClient is built.
        out = self._client.chat_completion(messages=messages, model=self.model)
        return out.choices[0].message.content.strip()


@dataclass
class OllamaProvider:
    model: str
    url: str = _OLLAMA_URL

    def generate(self, messages: List[dict], timeout: float | None = None) -> str:
        payload = {"model": self.model, "messages": messages, "stream": False}
        resp_data = _post_json(self.url, payload, {}, timeout)

        # Ollama /api/chat returns either {'message': str, 'done': bool}
        # or {'message': {'role': 'assistant', 'content': str, ...}, 'done': bool}
        msg = resp_data.get("message", "")
        if isinstance(msg, dict):
            msg = msg.get("content", "")
        if not isinstance(msg, str):
            raise ClassifierMalformedResponse(f"Unexpected Ollama response format: {resp_data}")
        return msg.strip()


def get_provider_from_env() -> LLMProvider:
    provider = os.environ.get("SCHEDCALC_LLM_PROVIDER", "openrouter").lower()

    if provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY not set")
        model = os.environ.get("SCHEDCALC_LLM_MODEL", "gpt-4o-mini")
        return OpenAIProvider(model=model, api_key=api_key)

    if provider == "ollama":
        model = os.environ.get("SCHEDCALC_LLM_MODEL", "phi3:mini")
        url = os.environ.get("OLLAMA_URL", _OLLAMA_URL)
        return OllamaProvider(model=model, url=url)

    if provider == "huggingface":
        token = os.environ.get("HF_API_TOKEN")
        model = os.environ.get("SCHEDCALC_LLM_MODEL", "Qwen/Qwen3-32B")
        return HuggingFaceProvider(model=model, token=token)

    # Default → OpenRouter
    api_key = os.environ.get("OPENROUTER_API_KEY")
    if not api_key:
        raise RuntimeError("OPENROUTER_API_KEY not set")
    model = os.environ.get("SCHEDCALC_LLM_MODEL", "anthropic/claude-3.5-sonnet")
    return OpenRouterProvider(model=model, api_key=api_key)


# -----------------------------------------------------------------------------
# Schedule C classifier
# -----------------------------------------------------------------------------

_RULES = """CRITICAL RULES:
- NEVER use Line 0 or any number outside 8-27
- If uncertain about the category, ALWAYS use "Other business expenses" (Line 27)
- If you think it's not a business expense, still use Line 27 and set expensable: false
- The schedule_c_line MUST be between 8 and 27 (inclusive)"""

_INTRO = "You are an expert tax accountant specializing in Schedule C business expenses."

_CATEGORY_BY_LINE = {c.line_number: c.name for c in SCHEDULE_C_CATEGORIES}


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```json"):
        content = content[len("```json"):]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def _to_classification(entry) -> Classification:
    if not isinstance(entry, dict):
        raise ClassifierMalformedResponse(f"Expected an object, got {entry!r}")
    try:
        line = int(entry.get("schedule_c_line") or 0)
        confidence = float(entry.get("confidence") or 0.0)
    except (TypeError, ValueError) as e:
        raise ClassifierMalformedResponse(f"Bad classification fields in {entry!r}") from e
    expensable = entry.get("expensable", False)
    if not isinstance(expensable, bool):
        raise ClassifierMalformedResponse(f"expensable must be true or false in {entry!r}")
    category = str(entry.get("category") or "").strip() or _CATEGORY_BY_LINE.get(line, "")
    return Classification(
        category=category,
        schedule_c_line=line,
        expensable=expensable,
        purpose=str(entry.get("purpose") or ""),
        confidence=confidence,
    )


def _request_item(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "vendor": tx.vendor,
        "amount": tx.amount,
        "description": tx.purpose,
    }


@dataclass
class ScheduleCClassifier:
    """Ask an LLM for Schedule C categories.

    Batch requests send an ordered list of ``{id, vendor, amount, description}``
    items and expect a JSON array back keyed by ``transaction_id``. Results are
    returned as parsed; range checks on the line number are the caller's job.
    """
    client: LLMClient | None = None
    batch_timeout: float = BATCH_TIMEOUT
    single_timeout: float = SINGLE_TIMEOUT

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = LLMClient()

    def _ask(self, prompt: str, timeout: float) -> str:
        messages = [{"role": "user", "content": prompt}]
        try:
            return self.client.chat(messages, timeout=timeout)
        except ClassifierError:
            raise
        except Exception as e:  # providers raise their own client errors
            raise ClassifierUnavailable(f"Error contacting LLM: {e}") from e

    def build_batch_prompt(self, transactions: Sequence[Transaction]) -> str:
        items = "\n".join(
            f"\nTransaction {i}:\n"
            f"- ID: {item['id']}\n"
            f"- Vendor: {item['vendor']}\n"
            f"- Amount: ${item['amount']:.2f}\n"
            f"- Description: {item['description']}"
            for i, item in enumerate((_request_item(tx) for tx in transactions), start=1)
        )
        return f"""{_INTRO}

Please categorize these {len(transactions)} business transactions and provide the corresponding IRS Schedule C line numbers:
{items}

For EACH transaction, provide a JSON object with:
1. transaction_id: The exact ID provided
2. category: Must be one of the exact categories listed below
3. schedule_c_line: IRS Schedule C line number (MUST be 8-27, NEVER use 0)
4. expensable: true/false if this is a legitimate business expense
5. purpose: Brief business purpose description
6. confidence: 0.0-1.0 confidence score

REQUIRED CATEGORIES (use exact names):
{categories_prompt_block()}

{_RULES}

Return a JSON array with one object per transaction:
[
  {{
    "transaction_id": "exact_id_from_input",
    "category": "category_name",
    "schedule_c_line": number,
    "expensable": boolean,
    "purpose": "description",
    "confidence": number
  }}
]"""

    def build_single_prompt(self, tx: Transaction) -> str:
        item = _request_item(tx)
        return f"""{_INTRO}

Please categorize this business transaction and provide the corresponding IRS Schedule C line number:

Vendor: {item['vendor']}
Amount: ${item['amount']:.2f}
Description: {item['description']}

Based on this information, provide a JSON response with:
1. category: Must be one of the exact categories listed below
2. schedule_c_line: IRS Schedule C line number (MUST be 8-27, NEVER use 0)
3. expensable: true/false if this is a legitimate business expense
4. purpose: Brief business purpose description
5. confidence: 0.0-1.0 confidence score

REQUIRED CATEGORIES (use exact names):
{categories_prompt_block()}

{_RULES}

Use the exact category name from the list above. If unsure, use "Other business expenses".

Respond with ONLY valid JSON:"""

    def classify_batch(self, transactions: Sequence[Transaction]) -> Dict[str, Classification]:
        """Classify several transactions in one request, keyed by transaction id.

        Entries that are malformed or carry an unknown id are dropped with a
        warning; a reply that is not a JSON array fails the whole batch.
        """
        if not transactions:
            return {}
        content = self._ask(self.build_batch_prompt(transactions), self.batch_timeout)
        try:
            entries = json.loads(_strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise ClassifierMalformedResponse(f"Failed to parse batch classification JSON: {e}") from e
        if not isinstance(entries, list):
            raise ClassifierMalformedResponse("Batch classification reply is not a JSON array")

        wanted = {tx.id for tx in transactions}
        results: Dict[str, Classification] = {}
        for entry in entries:
            tx_id = entry.get("transaction_id") if isinstance(entry, dict) else None
            if not isinstance(tx_id, str) or tx_id not in wanted:
                logger.warning("Ignoring classification for unknown transaction %r", tx_id)
                continue
            try:
                results[tx_id] = _to_classification(entry)
            except ClassifierMalformedResponse as e:
                logger.warning("Ignoring malformed classification for %s: %s", tx_id, e)
        return results

    def classify(self, tx: Transaction) -> Classification:
        content = self._ask(self.build_single_prompt(tx), self.single_timeout)
        try:
            entry = json.loads(_strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise ClassifierMalformedResponse(f"Failed to parse LLM response: {e}") from e
        return _to_classification(entry)
