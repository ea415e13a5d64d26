"""
Spatial query engine.

Answers radius / polygon / nearest-neighbor queries over the entity state store and computes
point-to-point distances. Every distance (filter test *and* reported value) comes from
`cotwatch.core.geo.haversine_m`, so a result is never included by one formula and reported by
another.

Results are enriched with distance, bearing, compass direction and derived grid indices
(MGRS, H3). Reference points can be given as coordinates or as an entity id; an unknown id
raises `EntityNotFound`. Batch distance isolates failures per destination.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from cotwatch.config.settings import SpatialSettings
from cotwatch.core import geo
from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.core.grid import to_h3, to_mgrs
from cotwatch.domain.errors import CotwatchError, EntityNotFound, ValidationFailure
from cotwatch.domain.models import (
    BatchDistanceItem,
    BatchDistanceResult,
    DistanceResult,
    EnrichedEntity,
    EntityFilter,
    GeoPoint,
    NearestResult,
    NearestStats,
    PointRef,
    PositionReport,
    SpatialQueryResult,
    TravelTime,
)
from cotwatch.spatial.summary import summarize_results
from cotwatch.state.store import EntityStateStore

logger = logging.getLogger(__name__)

# Nominal speeds (m/s) for travel-time estimates.
_WALKING_MPS = 1.4
_VEHICLE_MPS = 16.67
_HELICOPTER_MPS = 55.56


def _core(p: GeoPoint) -> CoreGeoPoint:
    return CoreGeoPoint(lat=p.lat, lon=p.lon)


def _model(p: CoreGeoPoint) -> GeoPoint:
    return GeoPoint(lat=p.lat, lon=p.lon)


def _check_units(units: str) -> str:
    try:
        geo.convert_distance(0.0, units)
    except ValueError as e:
        raise ValidationFailure(str(e), field="units") from e
    return units


def estimate_travel_time(distance_m: float) -> TravelTime:
    return TravelTime(
        walking=round(distance_m / _WALKING_MPS / 60),
        vehicle=round(distance_m / _VEHICLE_MPS / 60),
        helicopter=round(distance_m / _HELICOPTER_MPS / 60),
    )


class SpatialQueryEngine:
    def __init__(self, store: EntityStateStore, settings: SpatialSettings | None = None):
        self._store = store
        self._settings = settings or SpatialSettings()

    @property
    def store(self) -> EntityStateStore:
        return self._store

    # -- reference resolution ------------------------------------------------------------

    def resolve(self, ref: PointRef) -> CoreGeoPoint:
        """Resolve coordinates or an entity id to a point."""
        if ref.coordinates is not None and ref.entity_id:
            raise ValidationFailure("Provide either entity_id or coordinates, not both", field="point")
        if ref.coordinates is not None:
            lat, lon = float(ref.coordinates[0]), float(ref.coordinates[1])
            if not geo.is_valid_coordinate(lat, lon):
                raise ValidationFailure(f"Coordinates out of range: [{lat}, {lon}]", field="coordinates")
            return CoreGeoPoint(lat=lat, lon=lon)
        if ref.entity_id:
            report = self._store.require(ref.entity_id)
            return CoreGeoPoint(lat=report.lat, lon=report.lon)
        raise ValidationFailure("Either entity_id or coordinates must be provided", field="point")

    # -- enrichment ----------------------------------------------------------------------

    def _enrich(
        self, report: PositionReport, *, now: datetime, origin: CoreGeoPoint | None = None, distance_m: float | None = None
    ) -> EnrichedEntity:
        point = CoreGeoPoint(lat=report.lat, lon=report.lon)
        bearing = None
        if origin is not None:
            if distance_m is None:
                distance_m = geo.haversine_m(origin, point)
            bearing = geo.initial_bearing_deg(origin, point)

        mgrs_ref = h3_index = None
        if self._settings.enrich_grid:
            mgrs_ref = to_mgrs(report.lat, report.lon, self._settings.mgrs_precision)
            h3_index = to_h3(report.lat, report.lon, self._settings.h3_resolution)

        return EnrichedEntity(
            id=report.id,
            kind=report.kind,
            callsign=report.callsign,
            team=report.team,
            role=report.role,
            lat=report.lat,
            lon=report.lon,
            altitude=report.altitude,
            observed_at=report.observed_at,
            valid_until=report.valid_until,
            stale=report.is_stale(now),
            distance_m=distance_m,
            bearing_deg=bearing,
            compass=geo.compass_direction(bearing) if bearing is not None else None,
            mgrs=mgrs_ref,
            h3_index=h3_index,
            freeform=report.freeform,
        )

    def _now(self, filters: EntityFilter) -> datetime:
        return filters.now or self._store.now()

    # -- queries -------------------------------------------------------------------------

    def within_radius(
        self, center: GeoPoint, radius_m: float, filters: EntityFilter | None = None
    ) -> SpatialQueryResult:
        """Entities whose great-circle distance from `center` is <= `radius_m`."""
        if not radius_m > 0:
            raise ValidationFailure("radius_m must be > 0", field="radius_m")
        filters = filters or EntityFilter()
        now = self._now(filters)
        origin = _core(center)

        hits: list[tuple[float, PositionReport]] = []
        for report in self._store.query(filters):
            d = geo.haversine_m(origin, CoreGeoPoint(lat=report.lat, lon=report.lon))
            if d <= radius_m:
                hits.append((d, report))
        hits.sort(key=lambda t: (t[0], t[1].id))

        results = [self._enrich(r, now=now, origin=origin, distance_m=d) for d, r in hits]
        return SpatialQueryResult(total_count=len(results), results=results, summary=summarize_results(results))

    def within_polygon(
        self, vertices: Sequence[GeoPoint], filters: EntityFilter | None = None
    ) -> SpatialQueryResult:
        """Entities inside the polygon (open or closed ring; closed internally)."""
        if len({(v.lat, v.lon) for v in vertices}) < 3:
            raise ValidationFailure("Polygon requires at least 3 distinct vertices", field="vertices")
        filters = filters or EntityFilter()
        now = self._now(filters)
        ring = geo.close_ring([_core(v) for v in vertices])

        hits = [
            r
            for r in self._store.query(filters)
            if geo.point_in_polygon(CoreGeoPoint(lat=r.lat, lon=r.lon), ring)
        ]
        hits.sort(key=lambda r: r.id)

        results = [self._enrich(r, now=now) for r in hits]
        return SpatialQueryResult(total_count=len(results), results=results, summary=summarize_results(results))

    def nearest(
        self,
        reference: PointRef,
        *,
        max_results: int | None = None,
        max_distance_m: float | None = None,
        filters: EntityFilter | None = None,
    ) -> NearestResult:
        """Closest entities to `reference`, ties broken by entity id."""
        max_results = self._settings.default_max_results if max_results is None else int(max_results)
        if max_results < 1:
            raise ValidationFailure("max_results must be >= 1", field="max_results")
        if max_distance_m is not None and max_distance_m < 0:
            raise ValidationFailure("max_distance_m must be >= 0", field="max_distance_m")

        origin = self.resolve(reference)
        filters = filters or EntityFilter()
        if reference.entity_id:
            filters = filters.model_copy(update={"exclude_ids": [*filters.exclude_ids, reference.entity_id]})
        now = self._now(filters)

        candidates = self._store.query(filters)
        ranked = sorted(
            ((geo.haversine_m(origin, CoreGeoPoint(lat=r.lat, lon=r.lon)), r) for r in candidates),
            key=lambda t: (t[0], t[1].id),
        )
        if max_distance_m is not None:
            ranked = [(d, r) for d, r in ranked if d <= max_distance_m]
        ranked = ranked[:max_results]

        results = [self._enrich(r, now=now, origin=origin, distance_m=d) for d, r in ranked]
        distances = [d for d, _ in ranked]
        stats = NearestStats(
            total_entities=len(self._store),
            filtered_entities=len(candidates),
            results_returned=len(results),
            nearest_m=distances[0] if distances else None,
            farthest_m=distances[-1] if distances else None,
            average_m=sum(distances) / len(distances) if distances else None,
        )
        logger.debug("Nearest query returned %s of %s candidates", len(results), len(candidates))
        return NearestResult(reference=reference, reference_point=_model(origin), results=results, stats=stats)

    def distance_between(self, a: PointRef, b: PointRef, *, units: str = "meters") -> DistanceResult:
        """Great-circle distance and forward/back bearing from `a` to `b`."""
        _check_units(units)
        pa = self.resolve(a)
        pb = self.resolve(b)
        meters = geo.haversine_m(pa, pb)
        bearing = geo.initial_bearing_deg(pa, pb)
        return DistanceResult(
            from_point=_model(pa),
            to_point=_model(pb),
            from_entity_id=a.entity_id,
            to_entity_id=b.entity_id,
            distance=geo.convert_distance(meters, units),
            distance_m=meters,
            units=units,
            bearing_deg=bearing,
            back_bearing_deg=geo.back_bearing_deg(bearing),
            compass=geo.compass_direction(bearing),
            midpoint=_model(geo.midpoint(pa, pb)),
            estimated_travel=estimate_travel_time(meters),
        )

    def distance_batch(
        self, origin: PointRef, destinations: Sequence[PointRef], *, units: str = "meters"
    ) -> BatchDistanceResult:
        """Distances from one origin to many destinations; failures are reported per item."""
        _check_units(units)
        po = self.resolve(origin)

        items: list[BatchDistanceItem] = []
        for dest in destinations:
            try:
                pd = self.resolve(dest)
            except EntityNotFound as e:
                items.append(BatchDistanceItem(to=dest, error="not_found", message=str(e)))
                continue
            except CotwatchError as e:
                items.append(BatchDistanceItem(to=dest, error="validation", message=str(e)))
                continue
            items.append(
                BatchDistanceItem(
                    to=dest,
                    to_point=_model(pd),
                    distance=geo.convert_distance(geo.haversine_m(po, pd), units),
                    bearing_deg=geo.initial_bearing_deg(po, pd),
                )
            )

        ok = sorted((i for i in items if i.ok), key=lambda i: i.distance)
        return BatchDistanceResult(
            from_point=_model(po),
            units=units,
            distances=items,
            nearest=ok[0] if ok else None,
            farthest=ok[-1] if ok else None,
            total=len(items),
            successful=len(ok),
        )
