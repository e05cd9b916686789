from __future__ import annotations

import json
import logging
from datetime import timezone
from typing import Dict, List

from django.apps import apps
from django.http import JsonResponse
from django.utils import timezone as dj_timezone
from django.utils.dateparse import parse_datetime
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from .clustering import HOME_RADIUS_M, frequent_places, home_candidates
from .domain import RawTracePoint, StopEvent
from .services import get_tracking_snapshot
from .trace import simplify_trace, summarize_trace

logger = logging.getLogger(__name__)


def _session():
    return apps.get_app_config("livefleet").session


def _json_body(request) -> Dict:
    data = json.loads(request.body or b"{}")
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _trace_points(items: List[Dict]) -> List[RawTracePoint]:
    points = []
    for item in items:
        speed = item.get("speed")
        recorded_at = item.get("recorded_at")
        recorded_at = parse_datetime(recorded_at) if isinstance(recorded_at, str) else None
        if recorded_at is not None and dj_timezone.is_naive(recorded_at):
            recorded_at = dj_timezone.make_aware(recorded_at, timezone.utc)
        points.append(
            RawTracePoint(
                latitude=item.get("latitude"),
                longitude=item.get("longitude"),
                speed=float(speed) if isinstance(speed, (int, float)) else None,
                recorded_at=recorded_at,
            )
        )
    return points


class LiveLocationsAPIView(View):
    def get(self, request, *args, **kwargs):
        session = _session()
        snapshot = get_tracking_snapshot(
            session.store,
            status=request.GET.get("status") or None,
            region=request.GET.get("region") or None,
            province=request.GET.get("province") or None,
            connection=session.connection,
        )
        return JsonResponse(snapshot)


@method_decorator(csrf_exempt, name="dispatch")
class StopClustersAPIView(View):
    def post(self, request, *args, **kwargs):
        try:
            data = _json_body(request)
            stops = [StopEvent.from_dict(item) for item in data.get("stops", [])]
            radius = float(data.get("radius_meters", HOME_RADIUS_M))
            min_visits = int(data.get("min_visits") or 1)
            location_type = data.get("location_type")
            if location_type:
                clusters = home_candidates(stops, radius, location_type=location_type, min_visits=min_visits)
            else:
                clusters = frequent_places(stops, radius, min_visits=min_visits)
        except json.JSONDecodeError:
            return JsonResponse({"error": "Invalid JSON"}, status=400)
        except (AttributeError, KeyError, OverflowError, TypeError, ValueError) as error:
            return JsonResponse({"error": f"Invalid stops payload: {error}"}, status=400)

        logger.info("Clustered %d stops into %d places", len(stops), len(clusters))
        return JsonResponse(
            {
                "radius_meters": radius,
                "clusters": [cluster.to_dict() for cluster in clusters],
            }
        )


@method_decorator(csrf_exempt, name="dispatch")
class RouteGeometryAPIView(View):
    def post(self, request, *args, **kwargs):
        try:
            data = _json_body(request)
            locations = data.get("locations", [])
            if not isinstance(locations, list):
                raise ValueError("'locations' must be a list")
            points = _trace_points(locations)
            max_points = data.get("max_points")
            result = _session().geometry.geometry(
                points, max_points=int(max_points) if max_points is not None else None
            )
            summary = summarize_trace(points)
            markers = simplify_trace(points)
        except json.JSONDecodeError:
            return JsonResponse({"error": "Invalid JSON"}, status=400)
        except (AttributeError, OverflowError, TypeError, ValueError) as error:
            return JsonResponse({"error": f"Invalid trace payload: {error}"}, status=400)

        payload = result.to_dict()
        payload["summary"] = summary.to_dict()
        payload["markers"] = [[p.latitude, p.longitude] for p in markers]
        return JsonResponse(payload)
