"""Advisory trading summaries.

A summarizer is any callable taking a SummaryRequest and returning text, or
raising SummaryUnavailable. Two ship here: a rules-only coach (no network,
deterministic) and an OpenAI-compatible chat-completions client. Nothing in
this module feeds back into the statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .errors import SummaryUnavailable, UndefinedStatistic
from .insights import InsightsBundle

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SUMMARY_MODEL = "gpt-4"
TIMEOUT = 30

FAILURE_MESSAGE = "Failed to generate insights. Please check your API key and try again."


@dataclass(frozen=True)
class SummaryRequest:
    """Read-only snapshot handed to a summarizer."""
    trade_count: int
    worst_pair: str
    best_pair: str
    highest_profit: float


@dataclass(frozen=True)
class SummaryResult:
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


Summarizer = Callable[[SummaryRequest], str]


def summary_request(bundle: InsightsBundle) -> SummaryRequest:
    """Snapshot the bundle for a summarizer.

    Raises UndefinedStatistic when there were no trades to rank.
    """
    for name in ("best_pair", "worst_pair", "best_trade"):
        if not bundle.is_defined(name):
            raise UndefinedStatistic(name, "cannot summarize without trades")
    return SummaryRequest(
        trade_count=bundle.window_count,
        worst_pair=bundle.worst_pair.coin,
        best_pair=bundle.best_pair.coin,
        highest_profit=bundle.best_trade.closed_pnl,
    )


def build_prompt(req: SummaryRequest) -> str:
    return (
        "Analyze these trading statistics and provide insights:\n"
        f"Total trades: {req.trade_count}\n"
        f"Worst trading pair: {req.worst_pair}\n"
        f"Best trading pair: {req.best_pair}\n"
        f"Highest profit: ${req.highest_profit:.2f}\n\n"
        "Please provide a summary of the trading performance, including what to improve, "
        "what to maintain, and an overall sentiment (positive or negative)."
    )


def coaching_message(req: SummaryRequest) -> str:
    """Rules-only summary: fast and deterministic, no API key needed."""
    if req.highest_profit > 0:
        sentiment = "positive"
        maintain = f"Keep doing what works on {req.best_pair}; your best fill closed +{req.highest_profit:.2f}."
    else:
        sentiment = "negative"
        maintain = "No trade closed in profit yet; keep size small until a setup proves itself."

    if req.worst_pair == req.best_pair:
        improve = f"All results come from {req.best_pair}; review entries there before adding pairs."
    else:
        improve = f"Review your {req.worst_pair} trades; it is your weakest pair over {req.trade_count} trades."

    return f"Overall sentiment: {sentiment}.\nMaintain: {maintain}\nImprove: {improve}"


class ChatCompletionSummarizer:
    """Ask an OpenAI-compatible chat endpoint for a summary."""

    def __init__(self, api_key: str, *, url: str = DEFAULT_SUMMARY_URL,
                 model: str = DEFAULT_SUMMARY_MODEL, timeout: float = TIMEOUT):
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self.url = url
        self.model = model
        self.timeout = timeout

    def __call__(self, req: SummaryRequest) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_prompt(req)}],
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            return data["choices"][0]["message"]["content"].strip()
        except requests.exceptions.RequestException as e:
            logger.error("Summary request failed: %s", e)
            raise SummaryUnavailable(FAILURE_MESSAGE) from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Unexpected summary response: %s", e)
            raise SummaryUnavailable(FAILURE_MESSAGE) from e


def generate_summary(req: SummaryRequest, summarizer: Summarizer = coaching_message) -> SummaryResult:
    """Run a summarizer; failures come back as ``SummaryResult.error``."""
    try:
        return SummaryResult(text=summarizer(req))
    except SummaryUnavailable as e:
        return SummaryResult(error=str(e))
