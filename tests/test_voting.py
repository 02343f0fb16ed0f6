from collections import Counter

import numpy as np

from dot_fiducial.config import LlahConfig
from dot_fiducial.llah import HashTable, LlahHasher
from dot_fiducial.transforms import apply_homography, similarity_homography
from dot_fiducial.voting import assemble, cast_votes, neighborhood_agrees


def _table_for(hasher, marker):
    table = HashTable()
    for per_point in hasher.encode_all(marker.points):
        for d in per_point:
            table.add(marker.marker_id, d)
    return table


def _split(votes):
    correct = sum(c for (m, o, p), c in votes.items() if o == p)
    return correct, sum(votes.values()) - correct


def test_cast_votes_pairs_points_with_themselves(marker_set):
    hasher = LlahHasher(LlahConfig())
    marker = marker_set.markers[1]
    table = _table_for(hasher, marker)

    observed = apply_homography(similarity_homography(2.0, 0.7, 30.0, 5.0), marker.points)
    votes = cast_votes(hasher, table, observed, {1: marker})
    assert votes
    assert {m for m, _o, _p in votes} == {1}
    correct, wrong = _split(votes)
    assert correct >= 0.95 * (correct + wrong)


def test_neighborhood_check_drops_hits_on_the_wrong_reference(marker_set):
    # neighbouring dots sharing a neighbour combination produce the same
    # descriptor; only the geometric check tells their reference dots apart
    hasher = LlahHasher(LlahConfig())
    marker = marker_set.markers[1]
    table = _table_for(hasher, marker)
    observed = apply_homography(similarity_homography(2.0, 0.7, 30.0, 5.0), marker.points)

    unchecked = cast_votes(hasher, table, observed)
    checked = cast_votes(hasher, table, observed, {1: marker})

    correct_unchecked, wrong_unchecked = _split(unchecked)
    correct_checked, wrong_checked = _split(checked)
    assert wrong_unchecked > 0
    assert wrong_checked < wrong_unchecked
    assert correct_checked > 0.9 * correct_unchecked


def test_neighborhood_agrees_under_affine_map():
    rng = np.random.default_rng(3)
    registered = rng.uniform(0, 20, size=(6, 2))
    A = np.array([[1.7, 0.4], [-0.3, 0.9]])
    observed = registered @ A.T + [100.0, 40.0]
    assert neighborhood_agrees(observed, registered)

    scale = np.linalg.norm(observed[1:] - observed[0], axis=1).mean()
    moved = observed.copy()
    moved[0] += [0.5 * scale, 0.0]
    assert not neighborhood_agrees(moved, registered)
    assert neighborhood_agrees(moved, registered, tolerance=1.5)


def test_cast_votes_with_too_few_points(marker_set):
    hasher = LlahHasher(LlahConfig())
    table = _table_for(hasher, marker_set.markers[0])
    assert cast_votes(hasher, table, np.zeros((3, 2))) == Counter()


def test_assemble_requires_more_than_min_votes():
    votes = Counter({(0, 0, 0): 5, (0, 1, 1): 5, (1, 0, 3): 11})
    candidates = assemble(votes, min_votes=10)
    assert [c.marker_id for c in candidates] == [1]
    assert candidates[0].votes == 11


def test_assemble_resolves_conflicts_greedily():
    votes = Counter({
        (0, 0, 0): 9,
        (0, 0, 1): 4,  # observation 0 already taken
        (0, 1, 0): 3,  # point 0 already taken
        (0, 1, 2): 3,
        (0, 2, 2): 3,  # point 2 goes to observation 1 (lower index)
    })
    (cand,) = assemble(votes, min_votes=0)
    pairs = [(c.observation_index, c.point_index, c.votes) for c in cand.correspondences]
    assert pairs == [(0, 0, 9), (1, 2, 3)]
    assert cand.votes == 22


def test_assemble_orders_candidates_by_votes_then_id():
    votes = Counter({(3, 0, 0): 20, (1, 0, 0): 20, (2, 0, 0): 30})
    assert [c.marker_id for c in assemble(votes, min_votes=0)] == [2, 1, 3]


def test_assemble_empty():
    assert assemble(Counter(), min_votes=10) == []


def test_assemble_drops_pairings_outvoted_on_their_observation():
    votes = Counter({
        (0, 0, 0): 6,
        (0, 1, 1): 6,
        (0, 2, 2): 1,  # observation 2 is seen far more strongly as marker 1
        (1, 2, 5): 8,
        (1, 3, 6): 4,
        (1, 0, 7): 1,  # observation 0 belongs to marker 0
    })
    by_id = {c.marker_id: c for c in assemble(votes, min_votes=0, min_pair_ratio=0.5)}
    assert [(c.observation_index, c.point_index) for c in by_id[0].correspondences] == [(0, 0), (1, 1)]
    assert [(c.observation_index, c.point_index) for c in by_id[1].correspondences] == [(2, 5), (3, 6)]
    # total support still counts every vote
    assert by_id[0].votes == 13 and by_id[1].votes == 13


def test_assemble_without_ratio_keeps_weak_pairings():
    votes = Counter({(0, 0, 0): 6, (0, 1, 1): 1, (1, 1, 4): 9})
    by_id = {c.marker_id: c for c in assemble(votes, min_votes=0)}
    assert len(by_id[0].correspondences) == 2
