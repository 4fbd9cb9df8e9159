from django.urls import path
from .views import InsightsAPIView, SummaryAPIView, TimezonesAPIView, TradesAPIView

urlpatterns = [
    path("trades/", TradesAPIView.as_view(), name="api-trades"),
    path("insights/", InsightsAPIView.as_view(), name="api-insights"),
    path("insights/summary/", SummaryAPIView.as_view(), name="api-summary"),
    path("timezones/", TimezonesAPIView.as_view(), name="api-timezones"),
]
