# backend/analytics_hub/services/insights.py

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import requests

from ..config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_INSIGHT = "Unable to generate AI insights at this time."
FALLBACK_REPLY = "The assistant is unavailable right now, please try again later."

CHAT_SYSTEM_PROMPT = (
    "You are a data analytics assistant. Answer questions about datasets, "
    "machine learning models and their metrics clearly and concisely."
)

ANALYSIS_INSTRUCTIONS = {
    "summarize": "Summarize the following content in a few short paragraphs, keeping the key facts.",
    "analyze": "Analyze the following content: identify the main themes, claims and any notable data points.",
    "simplify": "Rewrite the following content in plain language that a non-specialist can follow.",
}


class LLMLimitError(Exception):
    """The upstream provider refused the call for rate or billing reasons."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


_LIMITS = {
    429: "Rate limit exceeded, please try again later.",
    402: "Payment required, please add credits to continue.",
}


def _chat_completion(messages: List[Dict[str, str]], fallback: str, temperature: float = 0.3) -> str:
    """
    POST messages to an OpenAI-compatible chat-completions endpoint.
    Rate/billing refusals raise LLMLimitError; every other failure (including
    a missing key) returns `fallback`.
    """
    if not settings.LLM_API_KEY:
        logger.info("LLM_API_KEY not set; skipping LLM call")
        return fallback

    headers = {
        "Authorization": f"Bearer {settings.LLM_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {"model": settings.LLM_MODEL, "messages": messages, "temperature": temperature}
    try:
        r = requests.post(settings.LLM_API_URL, json=payload, headers=headers, timeout=settings.LLM_TIMEOUT)
        if r.status_code in _LIMITS:
            logger.warning("LLM refused with %s", r.status_code)
            raise LLMLimitError(r.status_code, _LIMITS[r.status_code])
        if r.status_code != 200:
            logger.error("LLM error %s: %s", r.status_code, r.text[:200])
            return fallback
        data = r.json()
        return (((data.get("choices") or [{}])[0].get("message") or {}).get("content") or "").strip()
    except (requests.RequestException, ValueError) as e:
        logger.error("LLM request failed: %s", e)
        return fallback


def build_prompt(problem_type: str, dataset_name: str, configuration: Dict[str, Any],
                 metrics: Dict[str, Any], highlights: Optional[Dict[str, Any]] = None) -> str:
    lines = [
        f"Analyze the results of a {problem_type} model and give concise business insights.",
        f"Dataset: {dataset_name}",
        f"Configuration: {json.dumps(configuration, default=str)}",
        f"Metrics: {json.dumps(metrics, default=str)}",
    ]
    if highlights:
        lines.append(f"Highlights: {json.dumps(highlights, default=str)}")
    lines.append("Comment on reliability of the metrics and suggest next steps.")
    return "\n".join(lines)


def generate_insight(prompt: str) -> str:
    """Insight text for a finished run. Never raises."""
    try:
        content = _chat_completion([{"role": "user", "content": prompt}], FALLBACK_INSIGHT)
    except LLMLimitError as e:
        logger.warning("Insight skipped: %s", e.detail)
        return FALLBACK_INSIGHT
    return content or "No insights generated."


def chat(messages: List[Dict[str, str]]) -> str:
    history = [{"role": m["role"], "content": m["content"]} for m in messages]
    reply = _chat_completion([{"role": "system", "content": CHAT_SYSTEM_PROMPT}] + history,
                             FALLBACK_REPLY, temperature=0.7)
    return reply or FALLBACK_REPLY


def analyze_content(content: str, analysis_type: str = "summarize") -> str:
    instruction = ANALYSIS_INSTRUCTIONS.get(analysis_type)
    if instruction is None:
        raise ValueError(f"unknown analysis type: {analysis_type}")
    result = _chat_completion([{"role": "user", "content": f"{instruction}\n\n{content}"}], FALLBACK_REPLY)
    return result or FALLBACK_REPLY
