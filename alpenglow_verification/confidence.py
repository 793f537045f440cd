"""
Confidence computations for statistical verification.
"""

import math
from typing import Tuple

from scipy import stats


def wilson_interval(failures: int, trials: int, confidence: float) -> Tuple[float, float]:
    """Wilson score interval for a binomial proportion.

    Returns (0.0, 1.0) when there are no trials.
    """
    if trials == 0:
        return 0.0, 1.0
    z = float(stats.norm.ppf(1 - (1 - confidence) / 2))
    p = failures / trials
    denominator = 1 + z ** 2 / trials
    centre = (p + z ** 2 / (2 * trials)) / denominator
    margin = z * math.sqrt(p * (1 - p) / trials + z ** 2 / (4 * trials ** 2)) / denominator
    return max(0.0, centre - margin), min(1.0, centre + margin)


def required_sample_size(confidence: float, error_bound: float) -> int:
    """Samples needed so that zero observed failures bound the failure rate.

    Smallest n with (1 - error_bound) ** n <= 1 - confidence.
    """
    return math.ceil(math.log(1 - confidence) / math.log(1 - error_bound))


def chi_square_bound(degrees_of_freedom: int, alpha: float) -> float:
    return float(stats.chi2.ppf(1 - alpha, degrees_of_freedom))
