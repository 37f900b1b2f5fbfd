"""
AI Enhancement Module for Card Scanning

Sends the normalized OCR text of a card (and optionally the card photo) to
an LLM and maps the JSON answer back onto a ParsedContactRecord.

The heuristic extractor gets the layout right most of the time but cannot
tell that "Kevin Su" is a person and "Sunrise Labs" is not when both sit on
the top line. An LLM can, so when it answers in time its fields win.
"""

import base64
import json
import logging
import re
import time
from typing import Any, Dict, Optional

import requests

from .core.config import AIConfig
from .core.enhancer import CardEnhancerBase, EnhancementRequest
from .core.errors import AIRequestFailed
from .core.phone import LANDLINE, MOBILE, classify, digits_key, format_phone
from .core.utils import ParsedContactRecord
from .core.validation import validate_and_clean

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "llava:7b"


# =============================================================================
# Prompts
# =============================================================================

class PromptBuilder:
    """Builds the system and user prompts for business card parsing."""

    INSTRUCTIONS = {
        "zh": (
            "你是一個專業的名片資訊解析助手。請將提供的OCR文字解析成結構化的JSON格式。\n\n"
            "要求：\n"
            "1. 輸出格式必須是有效的JSON\n"
            "2. 所有欄位都是可選的，如果無法識別則設為null\n"
            "3. 電話號碼請格式化（移除空格、連字號）\n"
            "4. 電子郵件請驗證格式正確性\n"
            "5. 地址請整理成完整格式"
        ),
        "en": (
            "You are a professional business card information parser. Please parse "
            "the provided OCR text into structured JSON format.\n\n"
            "Requirements:\n"
            "1. Output must be valid JSON format\n"
            "2. All fields are optional, set to null if cannot be identified\n"
            "3. Format phone numbers (remove spaces, hyphens)\n"
            "4. Validate email format\n"
            "5. Organize address into complete format"
        ),
        "ja": (
            "あなたは専門的な名刺情報解析アシスタントです。提供されたOCRテキストを"
            "構造化されたJSON形式に解析してください。\n\n"
            "要求：\n"
            "1. 出力は有効なJSON形式でなければなりません\n"
            "2. すべてのフィールドはオプショナルで、識別できない場合はnullに設定\n"
            "3. 電話番号をフォーマット（スペース、ハイフンを削除）\n"
            "4. メールフォーマットを検証\n"
            "5. 住所を完全な形式に整理"
        ),
    }

    EXAMPLES = {
        "zh": {
            "name": "王小明",
            "title": "產品經理",
            "company": "科技公司股份有限公司",
            "department": "產品部",
            "phone": "0227201234",
            "mobile": "0912345678",
            "fax": None,
            "email": "example@company.com",
            "address": "台北市信義區信義路五段7號",
            "website": "https://www.company.com",
            "confidence": 0.85,
        },
        "en": {
            "name": "John Smith",
            "title": "Product Manager",
            "company": "Tech Company Inc.",
            "department": "Product",
            "phone": "0227201234",
            "mobile": None,
            "fax": None,
            "email": "john@company.com",
            "address": "123 Main St, New York, NY 10001",
            "website": "https://www.company.com",
            "confidence": 0.85,
        },
        "ja": {
            "name": "田中太郎",
            "title": "プロダクトマネージャー",
            "company": "テック株式会社",
            "department": "開発部",
            "phone": "0312345678",
            "mobile": None,
            "fax": None,
            "email": "tanaka@company.com",
            "address": "東京都新宿区新宿1-1-1",
            "website": "https://www.company.com",
            "confidence": 0.85,
        },
    }

    USER_TEMPLATE = {
        "zh": "請解析以下名片OCR文字，輸出結構化的JSON格式：\n\nOCR文字內容：\n{text}\n\n"
              "請僅回傳JSON格式的結果，不要包含其他說明文字。",
        "en": "Parse the following business card OCR text into structured JSON:\n\n"
              "OCR text:\n{text}\n\nReturn only the JSON result, without any explanation.",
        "ja": "以下の名刺OCRテキストを構造化されたJSON形式に解析してください：\n\n"
              "OCRテキスト：\n{text}\n\nJSON形式の結果のみを返してください。",
    }

    @staticmethod
    def language_key(language: str) -> str:
        """'en-US' -> 'en', 'ja-JP' -> 'ja', everything else -> 'zh'."""
        prefix = (language or "").split("-")[0].lower()
        return prefix if prefix in ("en", "ja") else "zh"

    @classmethod
    def system_prompt(cls, language: str = "zh-TW") -> str:
        key = cls.language_key(language)
        example = json.dumps(cls.EXAMPLES[key], ensure_ascii=False, indent=4)
        return f"{cls.INSTRUCTIONS[key]}\n\nJSON:\n{example}"

    @classmethod
    def user_prompt(cls, ocr_text: str, language: str = "zh-TW") -> str:
        key = cls.language_key(language)
        return cls.USER_TEMPLATE[key].format(text=ocr_text)


# =============================================================================
# Response mapping
# =============================================================================

def _extract_json(content: str) -> Dict[str, Any]:
    """Parse the JSON object in a model reply, tolerating code fences and chatter."""
    if not content or not content.strip():
        raise AIRequestFailed("empty response")

    text = content.strip()
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.S)
    if fenced:
        text = fenced.group(1)
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise AIRequestFailed("no JSON object in response")
        text = text[start:end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIRequestFailed(f"malformed JSON: {e}") from e
    if not isinstance(data, dict):
        raise AIRequestFailed("response JSON is not an object")
    return data


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if value.lower() in ("", "null", "none", "n/a"):
        return None
    return value


def _reported_confidence(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def record_from_fields(fields: Dict[str, Any]) -> ParsedContactRecord:
    """
    Map AI JSON fields onto a record.

    Phone values are re-formatted and re-classified, so a mobile number
    the model put under "phone" ends up in mobile. A missing confidence is
    left at 0 for the caller to score.
    """
    phone = _text(fields.get("phone"))
    mobile = _text(fields.get("mobile"))
    fax = _text(fields.get("fax"))

    if phone and classify(phone) == MOBILE:
        if mobile is None or digits_key(mobile) == digits_key(phone):
            mobile = phone
        phone = None
    if mobile and classify(mobile) == LANDLINE:
        if phone is None:
            phone = mobile
        mobile = None

    if phone and classify(phone) == LANDLINE:
        phone = format_phone(phone)
    if mobile and classify(mobile) == MOBILE:
        mobile = format_phone(mobile)
    if fax and classify(fax) == LANDLINE:
        fax = format_phone(fax)

    record = ParsedContactRecord(
        name=_text(fields.get("name")),
        job_title=_text(fields.get("title") or fields.get("job_title") or fields.get("jobTitle")),
        company=_text(fields.get("company")),
        department=_text(fields.get("department")),
        email=_text(fields.get("email")),
        phone=phone,
        mobile=mobile,
        fax=fax,
        address=_text(fields.get("address")),
        website=_text(fields.get("website")),
        confidence=_reported_confidence(fields.get("confidence")),
        source="ai",
    )
    return validate_and_clean(record)


def parse_ai_response(content: str) -> ParsedContactRecord:
    """Model reply text -> validated record. Raises AIRequestFailed."""
    return record_from_fields(_extract_json(content))


# =============================================================================
# Enhancers
# =============================================================================

def _post_json(url: str, payload: Dict[str, Any], timeout: float,
               headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise AIRequestFailed(f"request to {url} failed: {e}") from e

    if response.status_code != 200:
        raise AIRequestFailed(f"HTTP {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as e:
        raise AIRequestFailed(f"response is not JSON: {e}") from e


class OpenAICardEnhancer(CardEnhancerBase):
    """OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4.1-nano",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.3,
        max_tokens: int = 500,
        timeout: float = 20.0
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, request: EnhancementRequest) -> Dict[str, Any]:
        prompt = PromptBuilder.user_prompt(request.ocr_text, request.language)
        if request.image_bytes:
            image_b64 = base64.b64encode(request.image_bytes).decode("utf-8")
            user_content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url",
                 "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
            ]
        else:
            user_content = prompt

        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": PromptBuilder.system_prompt(request.language)},
                {"role": "user", "content": user_content},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def enhance(self, request: EnhancementRequest) -> ParsedContactRecord:
        if not self.is_available():
            raise AIRequestFailed("no API key configured")

        data = _post_json(
            f"{self.base_url}/chat/completions",
            self.build_payload(request),
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIRequestFailed(f"unexpected response shape: {e}") from e

        record = parse_ai_response(content)
        logger.debug("[AI] %s filled %s", self.model, record.filled_fields())
        return record


class OllamaCardEnhancer(CardEnhancerBase):
    """Local LLM through Ollama.

    Text-only models work; vision models (llava) also get the card photo
    when the request carries one.
    """

    def __init__(
        self,
        model: str = DEFAULT_OLLAMA_MODEL,
        base_url: str = "http://localhost:11434",
        temperature: float = 0.3,
        max_tokens: int = 500,
        timeout: float = 60.0
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._available = None

    def is_available(self) -> bool:
        """Check if Ollama is running and model is available."""
        if self._available is not None:
            return self._available

        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            if response.status_code == 200:
                models = response.json().get("models", [])
                model_names = [m.get("name", "") for m in models]
                # Accept any tag of the same model family
                self._available = any(
                    self.model.split(":")[0] in name
                    for name in model_names
                )
                if not self._available:
                    logger.warning("[AI] Model %s not found. Available: %s", self.model, model_names)
            else:
                self._available = False
        except (requests.RequestException, ValueError) as e:
            logger.warning("[AI] Ollama not available: %s", e)
            self._available = False

        return self._available

    def enhance(self, request: EnhancementRequest) -> ParsedContactRecord:
        prompt = (
            PromptBuilder.system_prompt(request.language)
            + "\n\n"
            + PromptBuilder.user_prompt(request.ocr_text, request.language)
        )
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        if request.image_bytes:
            payload["images"] = [base64.b64encode(request.image_bytes).decode("utf-8")]

        data = _post_json(f"{self.base_url}/api/generate", payload, timeout=self.timeout)
        return parse_ai_response(data.get("response", ""))


class MockCardEnhancer(CardEnhancerBase):
    """Mock enhancer for testing without a model.

    Args:
        fields: AI-style JSON fields to answer with
        delay: Seconds to block before answering
        fail: Raise AIRequestFailed instead of answering
        available: Value reported by is_available()
    """

    def __init__(
        self,
        fields: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
        fail: bool = False,
        available: bool = True
    ):
        self.fields = fields if fields is not None else {
            "name": "Kevin Su",
            "title": "Senior Engineer",
            "company": "Sunrise Labs Co., Ltd.",
            "email": "kevin.su@sunrise.com.tw",
            "phone": "03-6123-4567",
            "mobile": "0912-345-678",
            "confidence": 0.92,
        }
        self.delay = delay
        self.fail = fail
        self.available = available
        self.requests = []

    def is_available(self) -> bool:
        return self.available

    def enhance(self, request: EnhancementRequest) -> ParsedContactRecord:
        self.requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise AIRequestFailed("mock failure")
        return record_from_fields(self.fields)


def create_enhancer(
    kind: str = "openai",
    config: Optional[AIConfig] = None,
    model: str = None,
    timeout: float = None
) -> Optional[CardEnhancerBase]:
    """
    Factory function to create an AI enhancer.

    Args:
        kind: "openai", "ollama", "mock", or "none"
        config: AI client settings (default: AIConfig())
        model: Model name override
        timeout: HTTP timeout in seconds

    Returns:
        CardEnhancerBase or None if disabled
    """
    if kind is None or kind == "none":
        return None

    config = config or AIConfig()
    http_timeout = timeout if timeout is not None else 20.0

    if kind == "openai":
        enhancer = OpenAICardEnhancer(
            api_key=config.api_key,
            model=model or config.model,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=http_timeout,
        )
        if not enhancer.is_available():
            logger.warning("[AI] OPENAI_API_KEY not set, AI enhancement disabled")
            return None
        logger.info("[AI] Initialized OpenAI enhancer with %s", enhancer.model)
    elif kind == "ollama":
        # The OpenAI default model name means nothing to Ollama
        if model is None and config.model != AIConfig.model:
            model = config.model
        enhancer = OllamaCardEnhancer(
            model=model or DEFAULT_OLLAMA_MODEL,
            base_url=config.ollama_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=http_timeout,
        )
        if not enhancer.is_available():
            logger.warning("[AI] Ollama not available, AI enhancement disabled")
            logger.warning("[AI] To enable: ollama pull %s", enhancer.model)
            return None
        logger.info("[AI] Initialized Ollama enhancer with %s", enhancer.model)
    elif kind == "mock":
        enhancer = MockCardEnhancer()
        logger.info("[AI] Using mock enhancer (for testing only)")
    else:
        logger.warning("[AI] Unknown enhancer type: %s", kind)
        return None

    return enhancer
