"""Report generator client.

通过 OpenRouter (OpenAI 兼容接口) 生成市场简报，并启用 web 搜索插件，
让模型自行检索实时来源。每次调用只发出一次请求（不在此处重试）。
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from .config import LlmConfig
from .errors import (
    CredentialError,
    GenerationTimeoutError,
    ParseError,
    RateLimitError,
    TransportError,
)
from .models import ReportKind, Source

logger = logging.getLogger(__name__)

NO_CONTENT = "No content generated."

# User-facing failure messages (shown as the content of a FAILED report)
MSG_MISSING_KEY = "API Key 未設定。請確認環境變數 OPENROUTER_API_KEY 是否正確。"
MSG_INVALID_KEY = "API Key 無效或過期。"
MSG_RATE_LIMIT = "系統繁忙 (429)，請稍後再試。"
MSG_TIMEOUT = "生成報告逾時，請稍後再試。"
MSG_FAILED = "生成報告失敗: {detail}"

MAG7 = [
    ("Apple", "AAPL"),
    ("Microsoft", "MSFT"),
    ("Alphabet", "GOOGL"),
    ("Amazon", "AMZN"),
    ("NVIDIA", "NVDA"),
    ("Meta", "META"),
    ("Tesla", "TSLA"),
]


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_MORNING_PROMPT = """\
Current Date and Time: {now}.
Role: Senior Financial Analyst for a Chinese audience.
Task: Provide a "Morning Magnificent 7 Review" (美股早報 - 七巨頭分析), a recap of the previous trading session.

1. **Mag 7 Performance**: Search for the *most recent closing prices* (likely yesterday's close) for: {tickers}.
2. **Data Table**: Create a clean Markdown table with columns: Stock, Price, Change %.
3. **Key Movers**: Briefly explain the biggest mover's reason (news, earnings, etc.).

Output Language: {language}.
Format: Use Markdown. Keep it concise, readable on mobile.
"""

_EVENING_PROMPT = """\
Current Date and Time: {now}.
Role: Senior Financial Analyst for a Chinese audience.
Task: Provide a "US Market Evening Briefing" (美股晚報).

1. **Today's Major News**: Identify the most significant news, economic data, or earnings released *today* that are driving the market.
2. **Market Sentiment & Trend**: Analyze the current market mood (Bullish/Bearish/Neutral) and the estimated trend for the close.
3. **Outlook**: Brief prediction for the next session.

Output Language: {language}.
Format: Use Markdown. Keep it concise, professional, and readable on mobile.
"""


def build_prompt(kind: ReportKind, now: datetime, llm_config: LlmConfig) -> str:
    """Render the prompt for a report kind.

    Custom templates from config may use ``{now}``, ``{language}`` and
    ``{tickers}``.
    """
    if kind is ReportKind.MORNING:
        template = llm_config.morning_prompt or _MORNING_PROMPT
    else:
        template = llm_config.evening_prompt or _EVENING_PROMPT

    return template.format(
        now=now.strftime("%A, %B %d, %Y, %I:%M:%S %p"),
        language=llm_config.language,
        tickers=", ".join(f"{name} ({ticker})" for name, ticker in MAG7),
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    content: str
    sources: list[Source] = []


def _field(obj: Any, name: str) -> Any:
    # SDK objects expose attributes; unknown provider extras arrive as dicts
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _extract_message(response: Any) -> Any:
    choices = _field(response, "choices")
    if not choices:
        raise ParseError("response has no choices")
    message = _field(choices[0], "message")
    if message is None:
        raise ParseError("first choice has no message")
    return message


def extract_sources(annotations: Any, dedupe: bool = False) -> list[Source]:
    """Reduce ``url_citation`` annotations to Source objects.

    Keeps service order; skips citations without a URL; the title falls
    back to the URL.
    """
    sources: list[Source] = []
    seen: set[str] = set()
    for annotation in annotations or []:
        if _field(annotation, "type") != "url_citation":
            continue
        citation = _field(annotation, "url_citation")
        url = (_field(citation, "url") or "").strip() if citation is not None else ""
        if not url:
            continue
        if dedupe:
            if url in seen:
                continue
            seen.add(url)
        title = (_field(citation, "title") or "").strip() or url
        sources.append(Source(title=title, url=url))
    return sources


def parse_response(response: Any, dedupe: bool = False) -> GenerationResult:
    """Turn a chat completion into content + sources.

    A malformed body degrades to the placeholder content with no sources.
    """
    try:
        message = _extract_message(response)
    except ParseError as e:
        logger.warning("Unparseable generation response (%s), using placeholder", e)
        return GenerationResult(content=NO_CONTENT, sources=[])

    content = _field(message, "content") or NO_CONTENT
    sources = extract_sources(_field(message, "annotations"), dedupe=dedupe)
    return GenerationResult(content=content, sources=sources)


def _check_body_error(response: Any) -> None:
    # OpenRouter 可能在响应体中返回错误而非 HTTP 状态码
    error = _field(response, "error")
    if not error:
        return
    err_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
    err_code = error.get("code", "unknown") if isinstance(error, dict) else "unknown"
    logger.error("OpenRouter returned error (code=%s): %s", err_code, err_msg)
    if str(err_code) == "429":
        raise RateLimitError(MSG_RATE_LIMIT)
    if str(err_code) in ("401", "403"):
        raise CredentialError(MSG_INVALID_KEY)
    raise TransportError(MSG_FAILED.format(detail=err_msg))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ReportGenerator:
    """Generates one market briefing per call."""

    def __init__(
        self,
        llm_config: LlmConfig,
        api_key: str,
        client: Any = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.llm_config = llm_config
        self.api_key = api_key
        self._client = client
        self._clock = clock

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.llm_config.base_url,
                timeout=self.llm_config.timeout,
                max_retries=0,
            )
        return self._client

    async def generate(self, kind: ReportKind) -> GenerationResult:
        """Generate a report of the given kind.

        Raises:
            CredentialError: API key missing or rejected.
            RateLimitError: quota exhausted.
            GenerationTimeoutError: the call exceeded the configured timeout.
            TransportError: any other service or network failure.
        """
        if not self.api_key:
            logger.error("OPENROUTER_API_KEY is missing, refusing to call the service")
            raise CredentialError(MSG_MISSING_KEY)

        prompt = build_prompt(kind, self._clock(), self.llm_config)
        kwargs: dict = {
            "model": self.llm_config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.llm_config.temperature,
        }
        if self.llm_config.web_search:
            kwargs["extra_body"] = {"plugins": [{"id": "web"}]}

        logger.info("Requesting %s report from %s", kind.value, self.llm_config.model)
        try:
            response = await self._get_client().chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            logger.warning("Rate limited: %s", e)
            raise RateLimitError(MSG_RATE_LIMIT) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error("Credential rejected: %s", e)
            raise CredentialError(MSG_INVALID_KEY) from e
        except openai.APITimeoutError as e:
            logger.error("Generation timed out after %.0fs", self.llm_config.timeout)
            raise GenerationTimeoutError(MSG_TIMEOUT) from e
        except openai.APIError as e:
            logger.error("Generation API error: %s", e)
            raise TransportError(MSG_FAILED.format(detail=e.message or e.__class__.__name__)) from e

        _check_body_error(response)
        result = parse_response(response, dedupe=self.llm_config.dedupe_sources)
        logger.info(
            "Generated %s report: %d chars, %d sources",
            kind.value, len(result.content), len(result.sources),
        )
        return result
