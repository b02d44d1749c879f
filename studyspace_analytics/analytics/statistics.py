"""
Statistical Testing Module

Decides whether a before/after change is statistically significant without
depending on a statistics library:
- Welch's unequal-variance t-test
- Two-sided p-value via the regularized incomplete beta function
- Cohen's d effect size with interpretation bands
"""

import math
from typing import Optional, Sequence

import structlog

from studyspace_analytics.analytics.models import (
    EffectSize,
    EffectSizeLabel,
    SignificanceResult,
    TTestResult,
)
from studyspace_analytics.config import get_settings
from studyspace_analytics.config.settings import StatisticsSettings

logger = structlog.get_logger(__name__)
settings = get_settings()


# Lanczos approximation coefficients (g = 5, n = 6)
LANCZOS_COEFFICIENTS = (
    76.18009172947146,
    -86.50532032941677,
    24.01409824083091,
    -1.231739572450155,
    0.1208650973866179e-2,
    -0.5395239384953e-5,
)
LANCZOS_SERIES_START = 1.000000000190015
SQRT_TWO_PI = 2.5066282746310005
FPMIN = 1e-30


# =============================================================================
# DESCRIPTIVE HELPERS
# =============================================================================

def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0 for an empty sample"""
    if not values:
        return 0.0
    return sum(values) / len(values)


def standard_deviation(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1); 0 for fewer than two values"""
    n = len(values)
    if n < 2:
        return 0.0
    m = mean(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / (n - 1))


def pooled_standard_deviation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pooled SD of two samples; 0 when either has at most one value"""
    n1, n2 = len(a), len(b)
    if n1 <= 1 or n2 <= 1:
        return 0.0
    s1, s2 = standard_deviation(a), standard_deviation(b)
    return math.sqrt(((n1 - 1) * s1 ** 2 + (n2 - 1) * s2 ** 2) / (n1 + n2 - 2))


def growth_rate(before: float, after: float) -> float:
    """Percentage change; 100 when growing from zero, 0 when both are zero"""
    if before == 0:
        return 100.0 if after > 0 else 0.0
    return (after - before) / before * 100


# =============================================================================
# SPECIAL FUNCTIONS
# =============================================================================

def ln_gamma(x: float) -> float:
    """Natural log of the gamma function (Lanczos approximation, x > 0)"""
    y = x
    tmp = x + 5.5
    tmp -= (x + 0.5) * math.log(tmp)
    ser = LANCZOS_SERIES_START
    for coefficient in LANCZOS_COEFFICIENTS:
        y += 1
        ser += coefficient / y
    return -tmp + math.log(SQRT_TWO_PI * ser / x)


def _beta_continued_fraction(
    x: float,
    a: float,
    b: float,
    max_iterations: int,
    epsilon: float,
) -> float:
    """Continued fraction for the incomplete beta (modified Lentz)"""
    qab = a + b
    qap = a + 1
    qam = a - 1
    c = 1.0
    d = 1 - qab * x / qap
    if abs(d) < FPMIN:
        d = FPMIN
    d = 1 / d
    h = d

    for m in range(1, max_iterations + 1):
        m2 = 2 * m

        # Even step
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = 1 + aa * d
        if abs(d) < FPMIN:
            d = FPMIN
        c = 1 + aa / c
        if abs(c) < FPMIN:
            c = FPMIN
        d = 1 / d
        h *= d * c

        # Odd step
        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = 1 + aa * d
        if abs(d) < FPMIN:
            d = FPMIN
        c = 1 + aa / c
        if abs(c) < FPMIN:
            c = FPMIN
        d = 1 / d
        delta = d * c
        h *= delta

        if abs(delta - 1) < epsilon:
            break
    else:
        logger.debug("Incomplete beta did not converge", a=a, b=b, x=x)

    return h


def incomplete_beta(
    x: float,
    a: float,
    b: float,
    config: Optional[StatisticsSettings] = None,
) -> float:
    """
    Regularized incomplete beta function I_x(a, b).

    Args:
        x: Upper integration limit in [0, 1]
        a: First shape parameter (> 0)
        b: Second shape parameter (> 0)
        config: Override iteration cap and tolerance

    Returns:
        Value in [0, 1]
    """
    cfg = config or settings.statistics
    if x <= 0:
        return 0.0
    if x >= 1:
        return 1.0

    bt = math.exp(
        ln_gamma(a + b) - ln_gamma(a) - ln_gamma(b)
        + a * math.log(x) + b * math.log(1 - x)
    )

    if x < (a + 1) / (a + b + 2):
        return bt * _beta_continued_fraction(x, a, b, cfg.max_iterations, cfg.epsilon) / a
    return 1 - bt * _beta_continued_fraction(1 - x, b, a, cfg.max_iterations, cfg.epsilon) / b


def two_sided_p_value(t_value: float, df: float, config: Optional[StatisticsSettings] = None) -> float:
    """Two-sided p-value of Student's t with df degrees of freedom"""
    if df <= 0:
        return 1.0
    x = df / (df + t_value ** 2)
    return incomplete_beta(x, df / 2, 0.5, config=config)


# =============================================================================
# TESTS
# =============================================================================

def t_test(
    a: Sequence[float],
    b: Sequence[float],
    config: Optional[StatisticsSettings] = None,
) -> TTestResult:
    """
    Welch's t-test of sample b against sample a.

    t = (mean(b) - mean(a)) / SE, with Welch-Satterthwaite degrees of
    freedom. Either sample under two values, or zero standard error,
    yields (0, 1, not significant).

    Example:
        result = t_test(before_daily_revenue, after_daily_revenue)
        if result.is_significant:
            ...
    """
    cfg = config or settings.statistics
    n1, n2 = len(a), len(b)
    if n1 < 2 or n2 < 2:
        return TTestResult(t_value=0.0, p_value=1.0, is_significant=False)

    v1 = standard_deviation(a) ** 2 / n1
    v2 = standard_deviation(b) ** 2 / n2
    se = math.sqrt(v1 + v2)
    if se == 0:
        return TTestResult(t_value=0.0, p_value=1.0, is_significant=False)

    t_value = (mean(b) - mean(a)) / se
    df = (v1 + v2) ** 2 / (v1 ** 2 / (n1 - 1) + v2 ** 2 / (n2 - 1))
    p_value = two_sided_p_value(t_value, df, config=cfg)

    return TTestResult(
        t_value=t_value,
        p_value=p_value,
        is_significant=p_value < cfg.significance_level,
    )


def interpret_effect_size(d: float, config: Optional[StatisticsSettings] = None) -> EffectSizeLabel:
    """Cohen's conventional bands"""
    cfg = config or settings.statistics
    if d < cfg.small_effect:
        return EffectSizeLabel.NONE
    if d < cfg.medium_effect:
        return EffectSizeLabel.SMALL
    if d < cfg.large_effect:
        return EffectSizeLabel.MEDIUM
    return EffectSizeLabel.LARGE


def cohens_d(
    a: Sequence[float],
    b: Sequence[float],
    config: Optional[StatisticsSettings] = None,
) -> EffectSize:
    """Absolute standardized mean difference using the pooled SD"""
    pooled = pooled_standard_deviation(a, b)
    if pooled == 0:
        return EffectSize(d=0.0, interpretation=EffectSizeLabel.NONE)

    d = abs(mean(b) - mean(a)) / pooled
    return EffectSize(d=d, interpretation=interpret_effect_size(d, config=config))


class StatisticalTester:
    """
    Significance verdicts for before/after samples.

    Example:
        tester = StatisticalTester()
        result = tester.compare(before, after)
        print(result.p_value, result.effect_size_label)
    """

    def __init__(self, config: Optional[StatisticsSettings] = None):
        self.config = config or settings.statistics

    def t_test(self, a: Sequence[float], b: Sequence[float]) -> TTestResult:
        return t_test(a, b, config=self.config)

    def cohens_d(self, a: Sequence[float], b: Sequence[float]) -> EffectSize:
        return cohens_d(a, b, config=self.config)

    def compare(self, a: Sequence[float], b: Sequence[float]) -> SignificanceResult:
        """Run Welch's t-test and Cohen's d on the same two samples"""
        test = self.t_test(a, b)
        effect = self.cohens_d(a, b)

        logger.debug(
            "Samples compared",
            n_before=len(a),
            n_after=len(b),
            t_value=test.t_value,
            p_value=test.p_value,
            cohens_d=effect.d,
        )

        return SignificanceResult(
            t_value=test.t_value,
            p_value=test.p_value,
            is_significant=test.is_significant,
            cohens_d=effect.d,
            effect_size_label=effect.interpretation,
        )
