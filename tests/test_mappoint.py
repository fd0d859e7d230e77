import gc

import numpy as np

from slamkit.frame import Feature
from slamkit.mappoint import MapPoint


def test_create_assigns_consecutive_ids():
    a = MapPoint.create()
    b = MapPoint.create()
    assert b.id == a.id + 1


def test_position_round_trip_and_copy():
    mp = MapPoint.create()
    assert mp.pos.tolist() == [0.0, 0.0, 0.0]
    mp.pos = [1.0, 2.0, 3.0]
    got = mp.pos
    got[0] = 100.0
    assert mp.pos.tolist() == [1.0, 2.0, 3.0]


def test_add_observation_counts():
    mp = MapPoint.create()
    f1, f2 = Feature(), Feature()
    mp.add_observation(f1)
    mp.add_observation(f2)
    assert mp.observed_times == 2
    assert mp.observations() == [f1, f2]


def test_remove_observation_unlinks_feature():
    mp = MapPoint.create()
    f1, f2 = Feature(), Feature()
    for f in (f1, f2):
        f.map_point = mp
        mp.add_observation(f)
    mp.remove_observation(f1)
    assert mp.observed_times == 1
    assert mp.observations() == [f2]
    assert f1.map_point is None
    assert f2.map_point is mp


def test_remove_unknown_observation_changes_nothing():
    mp = MapPoint.create()
    f1, other = Feature(), Feature()
    other.map_point = mp
    mp.add_observation(f1)
    mp.remove_observation(other)
    assert mp.observed_times == 1
    assert other.map_point is mp


def test_observations_skip_dead_features():
    mp = MapPoint.create()
    keep = Feature()
    gone = Feature()
    mp.add_observation(keep)
    mp.add_observation(gone)
    del gone
    gc.collect()
    assert mp.observations() == [keep]
    assert mp.observed_times == 2


def test_constructor_position():
    mp = MapPoint(7, np.array([4.0, 5.0, 6.0]))
    assert mp.id == 7
    assert mp.pos.tolist() == [4.0, 5.0, 6.0]