from random import Random
from typing import Optional, Union


class Sampler:
    """Non-deterministic fallback for rollouts when the context has no identifier to hash.

    Results drawn here are not reproducible between calls; the evaluator marks them as such.
    """

    def __init__(self, generator: Optional[Random] = None):
        self.__generator = generator if generator is not None else Random()

    def sample_percentage(self, percentage: Union[int, float]) -> bool:
        # Booleans are ints in python, so they have to be excluded explicitly.
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            return False
        if percentage <= 0:
            return False
        if percentage >= 100:
            return True
        return self.__generator.random() * 100 < percentage

    def random_bucket(self) -> int:
        return self.__generator.randrange(100)
