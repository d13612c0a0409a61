import random

from common.testing import seed_random


def test_seed_random_repro_sequence():
    seed_random(42)
    first = [random.random() for _ in range(3)]
    seed_random(42)
    second = [random.random() for _ in range(3)]
    assert first == second


def test_seed_random_reads_env(monkeypatch):
    monkeypatch.setenv("TEST_RANDOM_SEED", "7")
    assert seed_random() == 7
