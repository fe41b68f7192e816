import math

import pytest

from apfsds.geoip import GeoExitNode, GeoLocation, haversine_distance, select_best_exit


def _tokyo(weight=1.0):
    return GeoExitNode("tokyo", "10.0.1.100:25347", weight, 35.6762, 139.6503)


def _singapore(weight=1.0):
    return GeoExitNode("singapore", "10.0.1.101:25347", weight, 1.3521, 103.8198)


SHANGHAI = GeoLocation("CN", "Shanghai", 31.2304, 121.4737)


def test_haversine_distance_tokyo_singapore():
    distance = haversine_distance(35.6762, 139.6503, 1.3521, 103.8198)
    assert abs(distance - 5300.0) < 100.0


def test_haversine_distance_same_point_is_zero():
    assert haversine_distance(10.0, 20.0, 10.0, 20.0) == pytest.approx(0.0)


def test_haversine_is_symmetric():
    a = haversine_distance(35.6762, 139.6503, 1.3521, 103.8198)
    b = haversine_distance(1.3521, 103.8198, 35.6762, 139.6503)
    assert a == pytest.approx(b)


def test_select_best_exit():
    best = select_best_exit([_tokyo(), _singapore()], SHANGHAI)
    assert best.name == "tokyo"


def test_select_best_exit_empty():
    assert select_best_exit([], SHANGHAI) is None


def test_unknown_location_picks_highest_weight():
    best = select_best_exit([_tokyo(1.0), _singapore(3.0)], GeoLocation())
    assert best.name == "singapore"


def test_unknown_location_tie_goes_to_last():
    best = select_best_exit([_tokyo(2.0), _singapore(2.0)], GeoLocation())
    assert best.name == "singapore"


def test_weight_lowers_score():
    heavy = _singapore(100.0)
    assert select_best_exit([_tokyo(1.0), heavy], SHANGHAI).name == "singapore"
    assert heavy.score(SHANGHAI) < _singapore(1.0).score(SHANGHAI)


def test_score_with_zero_weight_is_infinite():
    score = _tokyo(0.0).score(SHANGHAI)
    assert score == math.inf