from unittest import mock

import requests
from django.core.cache import caches
from django.test import SimpleTestCase, override_settings

from livefleet.domain import RawTracePoint
from livefleet.exceptions import RoutingError
from livefleet.routing import (
    OSRMRoutingBackend,
    RouteGeometryService,
    geometry_cache_key,
    sample_waypoints,
)

TEST_CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "livefleet-routing-tests",
    }
}


def straight_trace(count, start=(41.0, 29.0), step=0.001):
    return [(start[0] + i * step, start[1] + i * step) for i in range(count)]


class FakeBackend:
    """Replays scripted results; an exception instance is raised instead of returned."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def route(self, waypoints):
        self.calls.append(list(waypoints))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class ClockedCache:
    """Dict cache whose timeouts run on a fake clock; records every timeout it is given."""

    def __init__(self, clock):
        self.clock = clock
        self.entries = {}
        self.timeouts = []

    def get(self, key, default=None):
        value, expires_at = self.entries.get(key, (default, None))
        if expires_at is not None and self.clock() >= expires_at:
            del self.entries[key]
            return default
        return value

    def set(self, key, value, timeout):
        self.timeouts.append(("set", timeout))
        self.entries[key] = (value, self.clock() + timeout)

    def touch(self, key, timeout):
        self.timeouts.append(("touch", timeout))
        if key not in self.entries:
            return False
        value, _ = self.entries[key]
        self.entries[key] = (value, self.clock() + timeout)
        return True


class SampleWaypointsTests(SimpleTestCase):
    def test_long_trace_keeps_endpoints_and_stays_bounded(self):
        trace = straight_trace(120)
        sampled = sample_waypoints(trace, max_points=50)

        # step = ceil(120 / 50) = 3: indices 0, 3, 6, ..., 117 and 119.
        self.assertEqual(len(sampled), 41)
        self.assertLessEqual(len(sampled), 51)
        self.assertEqual(sampled[0], trace[0])
        self.assertEqual(sampled[-1], trace[119])
        self.assertEqual(sampled[1], trace[3])

    def test_short_trace_is_returned_unchanged(self):
        trace = straight_trace(50)
        self.assertEqual(sample_waypoints(trace, max_points=50), trace)

    def test_endpoints_and_bound_hold_for_any_size(self):
        for count in (2, 3, 4, 49, 50, 51, 99, 100, 101, 250, 1000):
            trace = straight_trace(count, step=0.0001)
            for max_points in (2, 3, 10, 50):
                sampled = sample_waypoints(trace, max_points=max_points)
                self.assertEqual(sampled[0], trace[0], (count, max_points))
                self.assertEqual(sampled[-1], trace[-1], (count, max_points))
                self.assertLessEqual(len(sampled), max_points + 1, (count, max_points))

    def test_invalid_points_are_dropped_before_sampling(self):
        trace = [(200.0, 29.0), (41.0, 29.0), {"latitude": None, "longitude": 1}, RawTracePoint(41.1, 29.1), (41.2, 29.2)]
        self.assertEqual(sample_waypoints(trace), [(41.0, 29.0), (41.1, 29.1), (41.2, 29.2)])

    def test_max_points_below_two_is_rejected(self):
        with self.assertRaises(ValueError):
            sample_waypoints(straight_trace(10), max_points=1)


class CacheKeyTests(SimpleTestCase):
    def test_key_uses_rounded_endpoints_and_count(self):
        key = geometry_cache_key([(41.123456, 29.0), (41.2, 29.1), (41.5, 29.5)])
        self.assertEqual(key, "route-geometry:41.1235,29.0000-41.5000,29.5000-3")

    def test_interior_points_do_not_change_the_key(self):
        first = [(41.0, 29.0), (41.1, 29.1), (41.5, 29.5)]
        second = [(41.0, 29.0), (40.0, 28.0), (41.5, 29.5)]
        self.assertEqual(geometry_cache_key(first), geometry_cache_key(second))

    def test_point_count_changes_the_key(self):
        self.assertNotEqual(
            geometry_cache_key([(41.0, 29.0), (41.5, 29.5)]),
            geometry_cache_key([(41.0, 29.0), (41.2, 29.2), (41.5, 29.5)]),
        )


@override_settings(CACHES=TEST_CACHES)
class RouteGeometryServiceTests(SimpleTestCase):
    def setUp(self):
        caches["default"].clear()
        self.clock = FakeClock()
        self.road = [(41.0, 29.0), (41.0005, 29.0008), (41.002, 29.002)]
        self.trace = straight_trace(5)

    def service(self, backend, **kwargs):
        return RouteGeometryService(backend, clock=self.clock, **kwargs)

    def test_backend_geometry_is_returned_and_cached(self):
        backend = FakeBackend(self.road)
        service = self.service(backend)

        first = service.geometry(self.trace)
        second = service.geometry(self.trace)

        self.assertEqual(first.geometry, self.road)
        self.assertEqual(first.source, "backend")
        self.assertFalse(first.is_error)
        self.assertEqual(second.geometry, self.road)
        self.assertEqual(second.source, "cache")
        self.assertEqual(len(backend.calls), 1)

    def test_backend_receives_sampled_waypoints(self):
        backend = FakeBackend(self.road)
        self.service(backend).geometry(straight_trace(120))
        self.assertEqual(len(backend.calls[0]), 41)

    def test_fewer_than_two_points_skip_the_backend(self):
        backend = FakeBackend(self.road)
        service = self.service(backend)

        self.assertEqual(service.geometry([]).geometry, [])
        single = service.geometry([(41.0, 29.0), (200.0, 0.0)])

        self.assertEqual(single.geometry, [(41.0, 29.0)])
        self.assertFalse(single.is_error)
        self.assertEqual(backend.calls, [])

    def test_disabled_lookup_returns_straight_line(self):
        backend = FakeBackend(self.road)
        result = self.service(backend).geometry(self.trace, enabled=False)
        self.assertEqual(result.geometry, self.trace)
        self.assertEqual(backend.calls, [])

    def test_failure_is_retried_once_then_falls_back_to_raw_points(self):
        backend = FakeBackend(RoutingError("down"))
        trace = [(41.0, 29.0), (None, None), (41.01, 29.01)]

        with self.assertLogs("livefleet.routing", level="WARNING"):
            result = self.service(backend).geometry(trace)

        self.assertEqual(len(backend.calls), 2)
        self.assertTrue(result.is_error)
        self.assertEqual(result.source, "fallback")
        self.assertEqual(result.geometry, [(41.0, 29.0), (41.01, 29.01)])
        self.assertGreaterEqual(len(result.geometry), 2)

    def test_retry_success_is_used(self):
        backend = FakeBackend(RoutingError("flaky"), self.road)
        result = self.service(backend).geometry(self.trace)
        self.assertEqual(len(backend.calls), 2)
        self.assertEqual(result.geometry, self.road)
        self.assertFalse(result.is_error)

    def test_empty_backend_result_counts_as_failure(self):
        backend = FakeBackend([])
        with self.assertLogs("livefleet.routing", level="WARNING"):
            result = self.service(backend).geometry(self.trace)
        self.assertTrue(result.is_error)
        self.assertEqual(result.geometry, self.trace)

    def test_failures_are_not_cached(self):
        backend = FakeBackend(RoutingError("down"), RoutingError("down"), self.road)
        service = self.service(backend)

        with self.assertLogs("livefleet.routing", level="WARNING"):
            service.geometry(self.trace)
        result = service.geometry(self.trace)

        self.assertEqual(result.geometry, self.road)
        self.assertEqual(len(backend.calls), 3)

    def test_stale_entry_is_refetched(self):
        newer = [(41.0, 29.0), (41.004, 29.004)]
        backend = FakeBackend(self.road, newer)
        service = self.service(backend)

        service.geometry(self.trace)
        self.clock.now += 301
        result = service.geometry(self.trace)

        self.assertEqual(result.geometry, newer)
        self.assertEqual(result.source, "backend")
        self.assertEqual(len(backend.calls), 2)

    def test_stale_entry_is_served_when_refetch_fails(self):
        backend = FakeBackend(self.road, RoutingError("down"))
        service = self.service(backend)

        service.geometry(self.trace)
        self.clock.now += 301
        with self.assertLogs("livefleet.routing", level="WARNING"):
            result = service.geometry(self.trace)

        self.assertEqual(result.geometry, self.road)
        self.assertTrue(result.is_error)
        self.assertEqual(result.source, "cache")

    def test_zero_max_points_is_rejected(self):
        backend = FakeBackend(self.road)
        with self.assertRaises(ValueError):
            self.service(backend).geometry(self.trace, max_points=0)
        self.assertEqual(backend.calls, [])

    def clocked_cache(self):
        fake = ClockedCache(self.clock)
        patcher = mock.patch.object(
            RouteGeometryService, "cache", new_callable=mock.PropertyMock, return_value=fake
        )
        patcher.start()
        self.addCleanup(patcher.stop)
        return fake

    def test_reads_keep_an_entry_alive_past_gc_time(self):
        backend = FakeBackend(self.road, RoutingError("down"))
        service = self.service(backend)
        cache = self.clocked_cache()

        service.geometry(self.trace)
        self.clock.now += 250
        self.assertEqual(service.geometry(self.trace).source, "cache")
        self.clock.now += 550
        with self.assertLogs("livefleet.routing", level="WARNING"):
            result = service.geometry(self.trace)

        self.assertEqual(result.geometry, self.road)
        self.assertEqual(result.source, "cache")
        self.assertTrue(result.is_error)
        self.assertEqual(cache.timeouts[0], ("set", 600))
        self.assertIn(("touch", 600), cache.timeouts)
        self.assertEqual({timeout for _, timeout in cache.timeouts}, {600})

    def test_unread_entry_is_evicted_after_gc_time(self):
        backend = FakeBackend(self.road, RoutingError("down"))
        service = self.service(backend)
        self.clocked_cache()

        service.geometry(self.trace)
        self.clock.now += 601
        with self.assertLogs("livefleet.routing", level="WARNING"):
            result = service.geometry(self.trace)

        self.assertEqual(result.source, "fallback")
        self.assertTrue(result.is_error)
        self.assertEqual(result.geometry, self.trace)
        self.assertEqual(len(backend.calls), 3)

    def test_to_dict(self):
        result = self.service(FakeBackend(self.road)).geometry(self.trace)
        data = result.to_dict()
        self.assertEqual(data["geometry"][0], [41.0, 29.0])
        self.assertFalse(data["is_loading"])
        self.assertIsNone(data["error"])


class OSRMRoutingBackendTests(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.backend = OSRMRoutingBackend("http://osrm.local/", timeout=3, session=self.session)

    def respond(self, payload):
        response = mock.Mock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        self.session.get.return_value = response

    def test_route_requests_lng_lat_pairs_and_decodes_polyline6(self):
        self.respond({"code": "Ok", "routes": [{"geometry": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"}]})

        geometry = self.backend.route([(41.0, 29.0), (41.5, 29.5)])

        args, kwargs = self.session.get.call_args
        self.assertEqual(
            args[0],
            "http://osrm.local/route/v1/driving/29.000000,41.000000;29.500000,41.500000",
        )
        self.assertEqual(kwargs["params"], {"overview": "full", "geometries": "polyline6"})
        self.assertEqual(kwargs["timeout"], 3)
        self.assertEqual(len(geometry), 3)
        self.assertAlmostEqual(geometry[0][0], 3.85, places=6)
        self.assertAlmostEqual(geometry[0][1], -12.02, places=6)

    def test_no_route_raises(self):
        self.respond({"code": "NoRoute", "message": "Impossible route", "routes": []})
        with self.assertRaises(RoutingError):
            self.backend.route([(41.0, 29.0), (41.5, 29.5)])

    def test_transport_error_raises(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(RoutingError):
            self.backend.route([(41.0, 29.0), (41.5, 29.5)])

    def test_malformed_geometry_raises(self):
        self.respond({"code": "Ok", "routes": [{}]})
        with self.assertRaises(RoutingError):
            self.backend.route([(41.0, 29.0), (41.5, 29.5)])

    def test_waypoint_count_limits(self):
        with self.assertRaises(RoutingError):
            self.backend.route([(41.0, 29.0)])
        with self.assertRaises(RoutingError):
            self.backend.route(straight_trace(101, step=0.0001))
        self.session.get.assert_not_called()
