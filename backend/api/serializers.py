from rest_framework import serializers

from analytics.trades import COLUMN_FIELDS


class TradeSerializer(serializers.Serializer):
    time = serializers.DateTimeField()
    coin = serializers.CharField()
    dir = serializers.CharField(allow_blank=True)
    px = serializers.FloatField()
    sz = serializers.FloatField()
    ntl = serializers.FloatField()
    fee = serializers.FloatField()
    closedPnl = serializers.FloatField(source="closed_pnl")


class RowRejectionSerializer(serializers.Serializer):
    row = serializers.IntegerField()
    raw_time = serializers.SerializerMethodField()
    reason = serializers.CharField()

    def get_raw_time(self, obj):
        # short rows carry NaN instead of a string
        return obj.raw_time if isinstance(obj.raw_time, str) else None


class TradeTableRequestSerializer(serializers.Serializer):
    file = serializers.FileField()
    sort = serializers.ChoiceField(choices=list(COLUMN_FIELDS), default="time")
    order = serializers.ChoiceField(choices=["asc", "desc"], default="desc")


class InsightsRequestSerializer(serializers.Serializer):
    """Upload plus the dashboard selections; values are validated by the engine."""
    file = serializers.FileField()
    timezone = serializers.CharField(allow_blank=True, default="")
    start = serializers.CharField(allow_blank=True, default="")
    end = serializers.CharField(allow_blank=True, default="")
