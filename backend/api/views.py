import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from analytics.coach import ChatCompletionSummarizer, coaching_message, generate_summary, summary_request
from analytics.errors import InvalidFilterInput, MalformedInput, UndefinedStatistic
from analytics.insights import build_insights
from analytics.parser import NO_TRADES_MESSAGE, parse_trade_file
from analytics.state import SUPPORTED_TIMEZONES, build_state

from .serializers import (
    InsightsRequestSerializer,
    RowRejectionSerializer,
    TradeSerializer,
    TradeTableRequestSerializer,
)

logger = logging.getLogger(__name__)


def _bad_request(error, **extra) -> Response:
    return Response({"error": error, **extra}, status=status.HTTP_400_BAD_REQUEST)


def _parse_upload(upload):
    """Return (ParseResult, None) or (None, error Response)."""
    try:
        result = parse_trade_file(upload)
    except MalformedInput as e:
        return None, _bad_request(f"Error parsing CSV file: {e}")

    rejected = RowRejectionSerializer(result.rejected, many=True).data
    if result.empty:
        return None, _bad_request(NO_TRADES_MESSAGE, rejected=rejected)
    return result, None


def _load_state(request):
    """Validate the form, parse the upload and apply the selections.

    Returns (state, rejected rows, None) or (None, None, error Response).
    """
    form = InsightsRequestSerializer(data=request.data)
    if not form.is_valid():
        return None, None, _bad_request(form.errors)
    data = form.validated_data

    result, error = _parse_upload(data["file"])
    if error is not None:
        return None, None, error

    try:
        state = build_state(
            result.trades,
            timezone=data["timezone"] or settings.INSIGHTS_DEFAULT_TIMEZONE,
            start=data["start"],
            end=data["end"],
        )
    except InvalidFilterInput as e:
        return None, None, _bad_request(str(e))
    return state, RowRejectionSerializer(result.rejected, many=True).data, None


class TradesAPIView(APIView):
    """Parse an upload and return the trade table, sorted on request."""

    def post(self, request):
        form = TradeTableRequestSerializer(data=request.data)
        if not form.is_valid():
            return _bad_request(form.errors)
        data = form.validated_data

        result, error = _parse_upload(data["file"])
        if error is not None:
            return error

        table = result.trades.sorted_by(data["sort"], descending=data["order"] == "desc")
        return Response({
            "count": len(table),
            "rejected": RowRejectionSerializer(result.rejected, many=True).data,
            "results": TradeSerializer(table, many=True).data,
        })


class InsightsAPIView(APIView):
    """Compute the insights bundle for an upload and the chosen filters."""

    def post(self, request):
        state, rejected, error = _load_state(request)
        if error is not None:
            return error

        bundle = build_insights(state)
        return Response({"insights": bundle.as_dict(), "rejected": rejected})


class SummaryAPIView(APIView):
    """Advisory text summary; uses the LLM endpoint only when a key is configured."""

    def post(self, request):
        state, _, error = _load_state(request)
        if error is not None:
            return error

        try:
            snapshot = summary_request(build_insights(state))
        except UndefinedStatistic as e:
            return _bad_request(str(e))

        conf = settings.INSIGHTS_SUMMARY
        if conf.get("API_KEY"):
            summarizer = ChatCompletionSummarizer(
                conf["API_KEY"], url=conf["URL"], model=conf["MODEL"], timeout=conf["TIMEOUT"]
            )
            source = "llm"
        else:
            summarizer = coaching_message
            source = "rules"

        result = generate_summary(snapshot, summarizer)
        if not result.ok:
            logger.error("Summary unavailable (%s): %s", source, result.error)
            return Response({"error": result.error}, status=status.HTTP_502_BAD_GATEWAY)
        return Response({"summary": result.text, "source": source})


class TimezonesAPIView(APIView):
    """Zones offered by the picker and the configured default."""

    def get(self, request):
        return Response({
            "default": settings.INSIGHTS_DEFAULT_TIMEZONE,
            "timezones": [{"name": k, "label": v} for k, v in SUPPORTED_TIMEZONES.items()],
        })
