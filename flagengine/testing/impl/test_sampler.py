from random import Random

from flagengine.impl.sampler import Sampler


def test_is_false_for_nonnumeric_values():
    sampler = Sampler(Random())
    for value in ["not a number", True, None]:
        assert sampler.sample_percentage(value) is False


def test_zero_or_less_is_never_sampled():
    sampler = Sampler(Random())
    for value in [-10, 0, 0.0]:
        assert all(sampler.sample_percentage(value) is False for _ in range(100))


def test_hundred_or_more_is_always_sampled():
    sampler = Sampler(Random())
    for value in [100, 100.0, 250]:
        assert all(sampler.sample_percentage(value) is True for _ in range(100))


def test_can_control_sampling_percentage():
    sampler = Sampler(Random(0))

    count = 0
    for _ in range(0, 10_000):
        if sampler.sample_percentage(25):
            count += 1

    assert 2200 < count < 2800


def test_random_bucket_covers_the_range():
    sampler = Sampler(Random(1))
    buckets = set(sampler.random_bucket() for _ in range(5000))
    assert min(buckets) == 0
    assert max(buckets) == 99
