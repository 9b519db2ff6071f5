import pytest

from shared.stats import avg, max_of, median, min_of, percentile, sum_of

pytestmark = [pytest.mark.unit]


def test_avg_ignores_none():
    assert avg([10, None, 20]) == 15


def test_empty_or_all_none_returns_none():
    for fn in (avg, sum_of, max_of, min_of, median):
        assert fn([]) is None
        assert fn([None, None]) is None
    assert percentile([None], 95) is None


def test_sum_max_min():
    values = [3.5, None, -1, 7]
    assert sum_of(values) == pytest.approx(9.5)
    assert max_of(values) == 7
    assert min_of(values) == -1


def test_zero_is_a_value_not_absence():
    assert avg([0, 0]) == 0
    assert sum_of([0]) == 0
    assert min_of([0, None]) == 0


def test_median_odd_and_even():
    assert median([5, 1, 3]) == 3
    assert median([4, 1, 3, 2]) == 2.5


def test_percentile_nearest_rank():
    values = list(range(1, 21))  # 1..20
    assert percentile(values, 95) == 19
    assert percentile(values, 100) == 20
    assert percentile(values, 0) == 1
    assert percentile([42], 95) == 42


def test_accepts_generators():
    assert avg(x for x in (1, 2, 3)) == 2
