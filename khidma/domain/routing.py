"""
Multi-stop Route Ordering
=========================

1. **Nearest neighbour** -- start at waypoint 0, repeatedly hop to the
   closest unvisited waypoint.  Ties go to the lowest index.
2. **2-opt** (optional) -- reverse any segment ``order[i..j]`` whose
   reversal strictly shortens the open path, scanning ``(i, j)`` in
   lexicographic order and restarting after each improvement.  Waypoint 0
   stays first.

Complexity
----------
Let N = number of waypoints (2 <= N <= 20).

* Distance matrix:   O(N^2)
* Nearest neighbour: O(N^2)
* 2-opt pass:        O(N^2) per sweep; sweeps are bounded by
  ``MAX_TWO_OPT_SWEEPS``

**Note:** neither step guarantees the optimal tour (the problem is
NP-hard).  Both are fully deterministic: identical input yields identical
output, on any machine, from any number of concurrent callers.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .distance import duration_minutes, haversine_km
from .entities import Coordinate, RouteResult
from .enums import VehicleType
from .errors import TooFewWaypoints, TooManyWaypoints

MIN_WAYPOINTS = 2
MAX_WAYPOINTS = 20
MAX_TWO_OPT_SWEEPS = 50
IMPROVEMENT_EPSILON_KM = 1e-9


def distance_matrix(waypoints: Sequence[Coordinate]) -> list[list[float]]:
    n = len(waypoints)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            d = haversine_km(
                waypoints[i].latitude, waypoints[i].longitude,
                waypoints[j].latitude, waypoints[j].longitude,
            )
            matrix[i][j] = matrix[j][i] = d
    return matrix


def path_length(order: Sequence[int], matrix: list[list[float]]) -> float:
    return sum(matrix[a][b] for a, b in zip(order, order[1:]))


def nearest_neighbour(matrix: list[list[float]]) -> list[int]:
    n = len(matrix)
    order = [0]
    visited = {0}
    current = 0
    while len(order) < n:
        best: Optional[int] = None
        for candidate in range(n):
            if candidate in visited:
                continue
            # strict < keeps the lowest index on ties
            if best is None or matrix[current][candidate] < matrix[current][best]:
                best = candidate
        order.append(best)
        visited.add(best)
        current = best
    return order


def two_opt(order: list[int], matrix: list[list[float]]) -> list[int]:
    """Improve an open path that starts at ``order[0]``."""
    route = list(order)
    n = len(route)
    for _ in range(MAX_TWO_OPT_SWEEPS):
        improved = False
        for i in range(1, n - 1):
            for j in range(i + 1, n):
                a, b = route[i - 1], route[i]
                c = route[j]
                before = matrix[a][b]
                after = matrix[a][c]
                if j + 1 < n:
                    d = route[j + 1]
                    before += matrix[c][d]
                    after += matrix[b][d]
                if after < before - IMPROVEMENT_EPSILON_KM:
                    route[i : j + 1] = reversed(route[i : j + 1])
                    improved = True
                    break
            if improved:
                break
        if not improved:
            return route
    return route


def validate_waypoints(waypoints: Sequence[Coordinate]) -> None:
    count = len(waypoints)
    if count < MIN_WAYPOINTS:
        raise TooFewWaypoints(
            f"At least {MIN_WAYPOINTS} waypoints are required, got {count}",
            {"count": count, "min": MIN_WAYPOINTS},
        )
    if count > MAX_WAYPOINTS:
        raise TooManyWaypoints(
            f"At most {MAX_WAYPOINTS} waypoints are allowed, got {count}",
            {"count": count, "max": MAX_WAYPOINTS},
        )


def optimize_route(
    waypoints: Sequence[Coordinate],
    vehicle_type: Optional[VehicleType] = None,
    use_two_opt: bool = True,
) -> RouteResult:
    """
    Order *waypoints* to shorten the total travelled distance.

    Returns the visiting order as a permutation of input indices (always
    starting with 0), the total distance along it, the estimated driving
    time for *vehicle_type*, and the distance of the input order for
    comparison.
    """
    validate_waypoints(waypoints)
    matrix = distance_matrix(waypoints)

    order = nearest_neighbour(matrix)
    if use_two_opt:
        order = two_opt(order, matrix)

    total = path_length(order, matrix)
    return RouteResult(
        order=tuple(order),
        total_distance_km=total,
        duration_minutes=duration_minutes(total, vehicle_type),
        input_order_distance_km=path_length(range(len(waypoints)), matrix),
    )
