from pathlib import Path
from unittest import mock

import requests
from django.conf import settings
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import override_settings
from django.urls import reverse
from rest_framework.test import APISimpleTestCase

from analytics.coach import FAILURE_MESSAGE
from analytics.parser import NO_TRADES_MESSAGE

DATASETS_DIR = Path(__file__).resolve().parents[2] / "trading_datasets"


def _summary_conf(**overrides):
    return {**settings.INSIGHTS_SUMMARY, **overrides}


class UploadMixin:
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.sample = (DATASETS_DIR / "sample_fills.csv").read_bytes()

    def _upload(self, content=None, name="fills.csv"):
        return SimpleUploadedFile(name, self.sample if content is None else content, content_type="text/csv")

    def _post(self, url_name, content=None, name="fills.csv", **fields):
        return self.client.post(
            reverse(url_name),
            {"file": self._upload(content, name), **fields},
            format="multipart",
        )


class TradesAPITests(UploadMixin, APISimpleTestCase):
    def test_table_defaults_to_newest_first(self):
        resp = self._post("api-trades")

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["count"], 9)
        self.assertEqual(body["results"][0]["coin"], "ETH")
        self.assertTrue(body["results"][0]["time"].startswith("2024-08-01T10:00:00"))
        self.assertEqual([r["row"] for r in body["rejected"]], [7, 10])

    def test_sort_by_pnl_keeps_upload_order_on_ties(self):
        resp = self._post("api-trades", sort="closedPnl", order="desc")

        results = resp.json()["results"]
        self.assertEqual([r["closedPnl"] for r in results[:2]], [200.0, 200.0])
        self.assertEqual([r["coin"] for r in results[:2]], ["ETH", "BTC"])
        self.assertEqual(results[-1]["coin"], "SOL")

    def test_unknown_sort_column(self):
        resp = self._post("api-trades", sort="price")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("sort", resp.json()["error"])

    def test_missing_file(self):
        resp = self.client.post(reverse("api-trades"), {}, format="multipart")
        self.assertEqual(resp.status_code, 400)

    def test_binary_upload_is_a_parse_error(self):
        resp = self._post("api-trades", content=b"\x89PNG\r\n\x1a\n\x00\x00")
        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.json()["error"].startswith("Error parsing CSV file"))

    def test_other_file_types_are_refused(self):
        resp = self._post("api-trades", name="fills.xlsx")
        self.assertEqual(resp.status_code, 400)

    def test_no_valid_rows(self):
        content = b"time,coin,dir,px,sz,ntl,fee,closedPnl\nnot-a-date,BTC,Open Long,1,1,1,0,0\n"
        resp = self._post("api-trades", content=content)

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], NO_TRADES_MESSAGE)
        self.assertEqual(resp.json()["rejected"][0]["raw_time"], "not-a-date")


class InsightsAPITests(UploadMixin, APISimpleTestCase):
    def test_bundle_for_sample(self):
        resp = self._post("api-insights")

        self.assertEqual(resp.status_code, 200)
        insights = resp.json()["insights"]
        self.assertEqual(insights["meta"]["n_trades"], 9)
        self.assertEqual(insights["meta"]["undefined"], [])
        self.assertAlmostEqual(insights["pnl"]["cumulative"], 50.0)
        self.assertEqual(insights["best_pair"]["coin"], "BTC")
        self.assertEqual(insights["best_week"]["start"], "2024-07-01")
        self.assertEqual(len(resp.json()["rejected"]), 2)

    def test_timezone_and_window(self):
        resp = self._post(
            "api-insights",
            timezone="America/Los_Angeles",
            start="2024-07-15",
            end="2024-07-31",
        )

        self.assertEqual(resp.status_code, 200)
        insights = resp.json()["insights"]
        self.assertEqual(insights["meta"]["timezone"], "America/Los_Angeles")
        self.assertEqual(insights["meta"]["n_trades_in_window"], 2)
        self.assertEqual([w["start"] for w in insights["weekly_series"]], ["2024-07-15", "2024-07-22"])
        # all-trade figures ignore the window
        self.assertEqual(insights["worst_trade"]["coin"], "SOL")

    def test_empty_window_reports_undefined(self):
        resp = self._post("api-insights", start="2031-01-01")

        insights = resp.json()["insights"]
        self.assertIsNone(insights["best_week"])
        self.assertIn("best_week", insights["meta"]["undefined"])
        self.assertEqual(insights["pnl"]["cumulative"], 0.0)

    def test_invalid_timezone(self):
        resp = self._post("api-insights", timezone="Mars/Olympus_Mons")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("timezone", resp.json()["error"])

    def test_invalid_start_date(self):
        resp = self._post("api-insights", start="31/12/2024")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("start date", resp.json()["error"])


class SummaryAPITests(UploadMixin, APISimpleTestCase):
    @override_settings(INSIGHTS_SUMMARY=_summary_conf(API_KEY=""))
    def test_rules_summary_without_key(self):
        resp = self._post("api-summary")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["source"], "rules")
        self.assertIn("SOL", resp.json()["summary"])

    @override_settings(INSIGHTS_SUMMARY=_summary_conf(API_KEY="sk-test"))
    def test_llm_summary(self):
        reply = mock.Mock()
        reply.raise_for_status.return_value = None
        reply.json.return_value = {"choices": [{"message": {"content": "Cut the SOL size."}}]}
        with mock.patch("analytics.coach.requests.post", return_value=reply) as post:
            resp = self._post("api-summary")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"summary": "Cut the SOL size.", "source": "llm"})
        self.assertIn("Total trades: 9", post.call_args.kwargs["json"]["messages"][0]["content"])

    @override_settings(INSIGHTS_SUMMARY=_summary_conf(API_KEY="sk-test"))
    def test_llm_failure_is_bad_gateway(self):
        with mock.patch("analytics.coach.requests.post", side_effect=requests.exceptions.Timeout("slow")):
            with self.assertLogs("api.views", level="ERROR"):
                resp = self._post("api-summary")

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["error"], FAILURE_MESSAGE)

    def test_summary_needs_trades_in_window(self):
        resp = self._post("api-summary", start="2031-01-01")
        self.assertEqual(resp.status_code, 400)


class TimezonesAPITests(APISimpleTestCase):
    def test_lists_picker_zones(self):
        resp = self.client.get(reverse("api-timezones"))

        self.assertEqual(resp.status_code, 200)
        names = [z["name"] for z in resp.json()["timezones"]]
        self.assertIn("Asia/Kuala_Lumpur", names)
        self.assertEqual(resp.json()["default"], settings.INSIGHTS_DEFAULT_TIMEZONE)
