from __future__ import annotations

import pytest

from dual_nback.nback_core import MatchResult, TurnResponse
from dual_nback.scoring import ConfusionMatrix, Outcome, ScoreAccumulator, classify, fold


@pytest.mark.parametrize(
    ("truth", "response", "expected"),
    [
        (True, True, Outcome.TRUE_POSITIVE),
        (True, False, Outcome.FALSE_NEGATIVE),
        (False, True, Outcome.FALSE_POSITIVE),
        (False, False, Outcome.TRUE_NEGATIVE),
    ],
)
def test_classification_table(truth: bool, response: bool, expected: Outcome) -> None:
    assert classify(ground_truth=truth, user_response=response) is expected


def test_fold_increments_exactly_one_cell() -> None:
    m = ConfusionMatrix(true_positives=1, true_negatives=2, false_positives=3, false_negatives=4)
    out = fold(ground_truth=False, user_response=True, matrix=m)

    assert out.false_positives == 4
    assert (out.true_positives, out.true_negatives, out.false_negatives) == (1, 2, 4)
    assert out.total == m.total + 1
    # The input matrix is untouched.
    assert m.false_positives == 3


def test_empty_denominators_use_defined_defaults() -> None:
    empty = ConfusionMatrix()
    assert empty.hit_rate == 1.0
    assert empty.false_alarm_rate == 0.0
    assert empty.miss_rate == 0.0
    assert empty.correct_rejection_rate == 1.0
    assert empty.balanced_accuracy == 1.0

    only_non_matches = ConfusionMatrix(true_negatives=3, false_positives=1)
    assert only_non_matches.hit_rate == 1.0
    assert only_non_matches.false_alarm_rate == pytest.approx(0.25)

    only_matches = ConfusionMatrix(true_positives=1, false_negatives=3)
    assert only_matches.false_alarm_rate == 0.0
    assert only_matches.hit_rate == pytest.approx(0.25)


def test_rates_and_balanced_accuracy() -> None:
    m = ConfusionMatrix(true_positives=3, false_negatives=1, true_negatives=8, false_positives=2)
    rates = m.rates()

    assert rates.hit_rate == pytest.approx(0.75)
    assert rates.miss_rate == pytest.approx(0.25)
    assert rates.false_alarm_rate == pytest.approx(0.2)
    assert rates.correct_rejection_rate == pytest.approx(0.8)
    assert rates.balanced_accuracy == pytest.approx((0.75 + 0.8) / 2)
    assert m.balanced_accuracy == pytest.approx(rates.balanced_accuracy)
    assert m.count(Outcome.FALSE_POSITIVE) == 2


def test_balanced_accuracy_is_not_inflated_by_rare_matches() -> None:
    # Never pressing when 1 in 10 turns matches: 90% raw correct, 50% balanced.
    m = ConfusionMatrix(true_negatives=9, false_negatives=1)
    assert m.balanced_accuracy == pytest.approx(0.5)


def test_accumulator_folds_each_modality_independently() -> None:
    acc = ScoreAccumulator()
    outcomes = acc.fold_turn(
        ground_truth=MatchResult(visual=True, audio=False),
        response=TurnResponse(visual=True, audio=True),
    )

    assert outcomes == (Outcome.TRUE_POSITIVE, Outcome.FALSE_POSITIVE)
    assert acc.visual == ConfusionMatrix(true_positives=1)
    assert acc.audio == ConfusionMatrix(false_positives=1)


def test_dict_form_uses_stable_keys() -> None:
    m = ConfusionMatrix(1, 2, 3, 4)
    assert m.to_dict() == {
        "true_positives": 1,
        "true_negatives": 2,
        "false_positives": 3,
        "false_negatives": 4,
    }
    assert ConfusionMatrix.from_dict({"true_negatives": 5}) == ConfusionMatrix(true_negatives=5)
