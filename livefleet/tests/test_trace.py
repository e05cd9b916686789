from datetime import datetime, timedelta, timezone

from django.test import SimpleTestCase

from livefleet.domain import RawTracePoint
from livefleet.trace import simplify_trace, summarize_trace

START = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def fix(lat, lng, speed=None, minutes=None):
    recorded_at = START + timedelta(minutes=minutes) if minutes is not None else None
    return RawTracePoint(lat, lng, speed=speed, recorded_at=recorded_at)


class SimplifyTraceTests(SimpleTestCase):
    def test_close_fixes_are_dropped_but_last_is_kept(self):
        points = [fix(41.0, 29.0), fix(41.0001, 29.0), fix(41.0002, 29.0), fix(41.0003, 29.0)]
        kept = simplify_trace(points)
        self.assertEqual(kept, [points[0], points[-1]])

    def test_distance_speed_and_time_gaps_keep_fixes(self):
        points = [
            fix(41.0, 29.0, speed=30, minutes=0),
            fix(41.002, 29.0, speed=30, minutes=1),  # ~222 m away
            fix(41.0021, 29.0, speed=55, minutes=2),  # speed jump
            fix(41.0022, 29.0, speed=55, minutes=10),  # long gap
            fix(41.0022, 29.0, speed=55, minutes=11),
            fix(41.0023, 29.0, speed=55, minutes=12),
        ]
        kept = simplify_trace(points)
        self.assertEqual(kept, [points[0], points[1], points[2], points[3], points[5]])

    def test_invalid_and_short_input(self):
        self.assertEqual(simplify_trace([]), [])
        only = fix(41.0, 29.0)
        self.assertEqual(simplify_trace([fix(200.0, 0.0), only]), [only])


class SummarizeTraceTests(SimpleTestCase):
    def test_summary(self):
        points = [
            fix(41.0, 29.0, speed=20, minutes=0),
            fix(41.05, 29.0, speed=70, minutes=6),
            fix(41.1, 29.0, speed=50, minutes=12),
        ]
        summary = summarize_trace(points)

        self.assertAlmostEqual(summary.total_distance_km, 11.12, places=1)
        self.assertEqual(summary.total_duration_minutes, 12)
        self.assertAlmostEqual(summary.avg_speed_kmh, 55.6, places=0)
        self.assertEqual(summary.max_speed_kmh, 70)
        self.assertEqual(summary.points, 3)

    def test_single_point(self):
        summary = summarize_trace([fix(41.0, 29.0)])
        self.assertEqual(summary.to_dict()["total_distance_km"], 0)
        self.assertEqual(summary.points, 1)

    def test_missing_timestamps_give_zero_average(self):
        summary = summarize_trace([fix(41.0, 29.0, speed=10), fix(41.1, 29.0, speed=20)])
        self.assertEqual(summary.total_duration_minutes, 0)
        self.assertEqual(summary.avg_speed_kmh, 0)
        self.assertEqual(summary.max_speed_kmh, 20)
