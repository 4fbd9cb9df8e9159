import json
from pathlib import Path

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from analytics.errors import InvalidFilterInput, MalformedInput
from analytics.insights import build_insights
from analytics.parser import NO_TRADES_MESSAGE, parse_trade_csv
from analytics.state import build_state


class Command(BaseCommand):
    help = "Parse a trade history CSV export and print the insights bundle as JSON."

    def add_arguments(self, parser):
        parser.add_argument("csv_path", type=Path)
        parser.add_argument("--timezone", default=None, help="IANA zone for day/week buckets (default from settings)")
        parser.add_argument("--start", default=None, help="ISO-8601 start bound, inclusive")
        parser.add_argument("--end", default=None, help="ISO-8601 end bound, inclusive")
        parser.add_argument("--indent", type=int, default=2)

    def handle(self, *args, **options):
        path: Path = options["csv_path"]
        if not path.is_file():
            raise CommandError(f"No such file: {path}")

        try:
            result = parse_trade_csv(path.read_bytes())
        except MalformedInput as e:
            raise CommandError(f"Error parsing CSV file: {e}") from e

        for rej in result.rejected:
            self.stderr.write(f"row {rej.row}: {rej.reason}")
        if result.empty:
            raise CommandError(NO_TRADES_MESSAGE)

        timezone = options["timezone"] or settings.INSIGHTS_DEFAULT_TIMEZONE
        try:
            state = build_state(result.trades, timezone=timezone, start=options["start"], end=options["end"])
        except InvalidFilterInput as e:
            raise CommandError(str(e)) from e

        payload = build_insights(state).as_dict()
        self.stdout.write(json.dumps(payload, indent=options["indent"]))
