from rewardforge.testing.fixtures import clock, memory_app  # noqa: F401
