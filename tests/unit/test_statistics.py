"""
Unit Tests - Statistics
"""
import math

import pytest
from scipy import special, stats

from studyspace_analytics.analytics.models import EffectSizeLabel
from studyspace_analytics.analytics.statistics import (
    StatisticalTester,
    cohens_d,
    growth_rate,
    incomplete_beta,
    interpret_effect_size,
    ln_gamma,
    mean,
    pooled_standard_deviation,
    standard_deviation,
    t_test,
    two_sided_p_value,
)

BEFORE = [812000.0, 790500.0, 845000.0, 770000.0, 801000.0, 829500.0, 798000.0]
AFTER = [880000.0, 905500.0, 860000.0, 921000.0, 874000.0, 899000.0, 910500.0]


class TestDescriptive:
    """Tests for the descriptive helpers"""

    def test_mean_empty(self):
        assert mean([]) == 0.0

    def test_standard_deviation_is_sample(self):
        """n - 1 denominator"""
        assert standard_deviation([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.13809, rel=1e-5)

    def test_standard_deviation_single_value(self):
        assert standard_deviation([5.0]) == 0.0

    def test_pooled_sd_needs_two_per_sample(self):
        """Pooled SD is zero when either sample has one observation"""
        assert pooled_standard_deviation([1.0], [1.0, 2.0, 3.0]) == 0.0

    @pytest.mark.parametrize("before,after,expected", [
        (100.0, 120.0, 20.0),
        (100.0, 80.0, -20.0),
        (0.0, 50.0, 100.0),
        (0.0, 0.0, 0.0),
    ])
    def test_growth_rate(self, before, after, expected):
        """Percentage growth with zero-baseline rules"""
        assert growth_rate(before, after) == pytest.approx(expected)


class TestSpecialFunctions:
    """Tests for log-gamma and the incomplete beta function"""

    @pytest.mark.parametrize("x", [0.5, 1.0, 2.5, 7.0, 30.0, 150.5])
    def test_ln_gamma(self, x):
        """Lanczos approximation matches scipy"""
        assert ln_gamma(x) == pytest.approx(special.gammaln(x), abs=1e-7)

    @pytest.mark.parametrize("x,a,b", [
        (0.1, 0.5, 0.5),
        (0.3, 2.0, 0.5),
        (0.7, 5.0, 0.5),
        (0.95, 40.0, 0.5),
        (0.5, 3.0, 4.0),
    ])
    def test_incomplete_beta(self, x, a, b):
        """Continued fraction matches scipy's regularized incomplete beta"""
        assert incomplete_beta(x, a, b) == pytest.approx(special.betainc(a, b, x), abs=1e-6)

    def test_incomplete_beta_bounds(self):
        assert incomplete_beta(0.0, 2.0, 0.5) == 0.0
        assert incomplete_beta(1.0, 2.0, 0.5) == 1.0

    @pytest.mark.parametrize("t_value,df", [(0.5, 3), (2.1, 12.4), (-3.3, 25), (1.96, 200), (6.0, 8)])
    def test_two_sided_p_value(self, t_value, df):
        """p-value of Student's t matches scipy"""
        expected = 2 * stats.t.sf(abs(t_value), df)
        assert two_sided_p_value(t_value, df) == pytest.approx(expected, abs=1e-4)


class TestTTest:
    """Tests for Welch's t-test"""

    def test_identical_samples(self):
        """Equal constant samples give t=0, p=1"""
        result = t_test([10, 10, 10], [10, 10, 10])
        assert result.t_value == 0.0
        assert result.p_value == 1.0
        assert result.is_significant is False

    def test_single_observation(self):
        result = t_test([10.0], [12.0, 14.0])
        assert (result.t_value, result.p_value, result.is_significant) == (0.0, 1.0, False)

    def test_matches_scipy(self):
        """t and p agree with scipy's Welch test"""
        result = t_test(BEFORE, AFTER)
        expected = stats.ttest_ind(AFTER, BEFORE, equal_var=False)

        assert result.t_value == pytest.approx(expected.statistic, rel=1e-9)
        assert result.p_value == pytest.approx(expected.pvalue, abs=1e-4)
        assert result.is_significant is True

    def test_unequal_sizes_match_scipy(self):
        a = [3.1, 2.9, 3.4, 3.0, 2.7, 3.3, 3.2, 2.8, 3.6]
        b = [3.5, 3.9, 3.1, 4.2]
        result = t_test(a, b)
        expected = stats.ttest_ind(b, a, equal_var=False)
        assert result.p_value == pytest.approx(expected.pvalue, abs=1e-4)

    def test_antisymmetry(self):
        """Swapping samples negates t and keeps p"""
        forward = t_test(BEFORE, AFTER)
        backward = t_test(AFTER, BEFORE)
        assert backward.t_value == pytest.approx(-forward.t_value)
        assert backward.p_value == pytest.approx(forward.p_value)

    def test_not_significant(self):
        result = t_test([10, 12, 11, 9], [11, 10, 12, 10])
        assert result.is_significant is False
        assert 0.0 <= result.p_value <= 1.0


class TestCohensD:
    """Tests for Cohen's d"""

    def test_identical_samples(self):
        result = cohens_d([10, 10, 10], [10, 10, 10])
        assert result.d == 0.0
        assert result.interpretation == EffectSizeLabel.NONE

    def test_non_negative(self):
        """d is the absolute difference"""
        assert cohens_d(AFTER, BEFORE).d >= 0
        assert cohens_d(AFTER, BEFORE).d == pytest.approx(cohens_d(BEFORE, AFTER).d)

    def test_value(self):
        a, b = [1.0, 2.0, 3.0, 4.0], [3.0, 4.0, 5.0, 6.0]
        pooled = math.sqrt((3 * standard_deviation(a) ** 2 + 3 * standard_deviation(b) ** 2) / 6)
        assert cohens_d(a, b).d == pytest.approx(2.0 / pooled)

    @pytest.mark.parametrize("d,label", [
        (0.1, EffectSizeLabel.NONE),
        (0.2, EffectSizeLabel.SMALL),
        (0.5, EffectSizeLabel.MEDIUM),
        (0.79, EffectSizeLabel.MEDIUM),
        (0.8, EffectSizeLabel.LARGE),
    ])
    def test_bands(self, d, label):
        assert interpret_effect_size(d) == label


class TestStatisticalTester:
    """Tests for the combined comparison"""

    def test_compare(self):
        result = StatisticalTester().compare(BEFORE, AFTER)
        assert result.is_significant is True
        assert result.effect_size_label == EffectSizeLabel.LARGE
        assert result.t_value > 0

    def test_custom_alpha(self, test_settings):
        """A stricter significance level changes the verdict"""
        a = [10.0, 11.0, 9.5, 10.5, 10.2]
        b = [10.8, 11.6, 10.4, 11.1, 11.0]
        p_value = t_test(a, b).p_value
        strict = test_settings.statistics.model_copy(update={"significance_level": p_value / 2})
        loose = test_settings.statistics.model_copy(update={"significance_level": min(0.99, p_value * 2)})

        assert StatisticalTester(strict).compare(a, b).is_significant is False
        assert StatisticalTester(loose).compare(a, b).is_significant is True
