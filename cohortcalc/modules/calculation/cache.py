import logging
import threading
from typing import Any, Callable, Dict, Hashable, Iterable, Mapping, Optional

import pandas as pd

from cohortcalc.constants.cohort import CACHE_HITS, CACHE_MISSES
from cohortcalc.modules.calculation.context import EvaluationContext, freeze_parameters

logger = logging.getLogger(__name__)


class CalculationCache:
    """
    Memoizes calculation results for one evaluation pass.

    Keys combine the calculation identity (name and configuration), the exact
    cohort, the frozen parameters and the context, so a result computed for
    one cohort never answers a request for another. The cache is owned by a
    single pass and discarded with it; the lock only makes it safe when that
    pass fans out on threads.
    """

    def __init__(self) -> None:
        self._results: Dict[Hashable, pd.Series] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(
        calculation,
        cohort: Iterable,
        parameters: Optional[Mapping[str, Any]],
        context: EvaluationContext,
    ) -> tuple:
        return (
            calculation.identity(),
            frozenset(cohort),
            freeze_parameters(parameters),
            context,
        )

    def get_or_compute(self, key: Hashable, compute: Callable[[], pd.Series]) -> pd.Series:
        # Re-entrant: dependency calls made inside compute() use the same cache.
        with self._lock:
            if key in self._results:
                self.hits += 1
                logger.debug(f"Cache hit for {key[0][0]}")
                return self._results[key].copy()
            result = compute()
            self.misses += 1
            logger.debug(f"Cache miss for {key[0][0]}, stored {len(result)} results")
            self._results[key] = result
            return result.copy()

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._results

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def stats(self) -> dict:
        return {CACHE_HITS: self.hits, CACHE_MISSES: self.misses}
