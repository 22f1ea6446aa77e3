"""
Statistics for comparing the in-sample and out-of-sample returns of
walk-forward windows.

The comparison is paired: every window contributes one in-sample and one
out-of-sample value, and the tests work on the per-window differences
`treatment - baseline`.
"""
import math
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from quantsim.backtester.results import ResultModel

MIN_WILCOXON_PAIRS = 5

_EFFECT_SIZE_LABELS = ((0.2, "negligible"), (0.5, "small"), (0.8, "medium"))
_SIGNIFICANCE_LABELS = ((0.001, "highly significant (p < 0.001)"), (0.01, "very significant (p < 0.01)"))


def confidence_interval(values: Sequence[float], confidence: float = 0.95) -> Tuple[float, float, float]:
    """
    Mean of `values` with a t-distribution confidence interval.

    Returns:
        Tuple[float, float, float]: (mean, lower, upper). The bounds collapse
        to the mean when the spread cannot be estimated, and an empty sample
        gives zeros.
    """
    data = np.asarray(values, dtype=float)
    if data.size == 0:
        return 0.0, 0.0, 0.0
    mean = float(data.mean())
    if data.size < 2:
        return mean, mean, mean
    std_err = stats.sem(data)
    if not np.isfinite(std_err) or std_err == 0:
        return mean, mean, mean
    lower, upper = stats.t.interval(confidence, data.size - 1, loc=mean, scale=std_err)
    return mean, float(lower), float(upper)


def _differences(baseline: Sequence[float], treatment: Sequence[float]) -> np.ndarray:
    if len(baseline) != len(treatment):
        raise ValueError(f"Paired samples must have the same length ({len(baseline)} vs {len(treatment)}).")
    return np.asarray(treatment, dtype=float) - np.asarray(baseline, dtype=float)


def paired_t_test(baseline: Sequence[float], treatment: Sequence[float]) -> Tuple[float, float]:
    """
    One-sample t-test of the paired differences against zero.

    Returns:
        Tuple[float, float]: The t statistic and the two-sided p-value;
        (0.0, 1.0) with fewer than two pairs or when the test is undefined.
    """
    differences = _differences(baseline, treatment)
    if differences.size < 2:
        return 0.0, 1.0
    result = stats.ttest_1samp(differences, 0.0)
    t_stat, p_value = float(result.statistic), float(result.pvalue)
    if math.isnan(t_stat) or math.isnan(p_value):
        return 0.0, 1.0
    return t_stat, p_value


def wilcoxon_signed_rank(baseline: Sequence[float], treatment: Sequence[float]) -> Tuple[float, float]:
    """
    Wilcoxon signed-rank test of the paired differences. Needs at least
    MIN_WILCOXON_PAIRS pairs and one non-zero difference, otherwise
    (0.0, 1.0) is returned.
    """
    differences = _differences(baseline, treatment)
    if differences.size < MIN_WILCOXON_PAIRS or not np.any(differences):
        return 0.0, 1.0
    result = stats.wilcoxon(differences)
    statistic, p_value = float(result.statistic), float(result.pvalue)
    if math.isnan(statistic) or math.isnan(p_value):
        return 0.0, 1.0
    return statistic, p_value


def cohens_d(baseline: Sequence[float], treatment: Sequence[float]) -> float:
    """Mean paired difference in units of its sample standard deviation."""
    differences = _differences(baseline, treatment)
    if differences.size < 2:
        return 0.0
    spread = differences.std(ddof=1)
    if spread == 0:
        return 0.0
    return float(differences.mean() / spread)


def describe_effect_size(d: float) -> str:
    for bound, label in _EFFECT_SIZE_LABELS:
        if abs(d) < bound:
            return label
    return "large"


def describe_p_value(p: float, alpha: float = 0.05) -> str:
    for bound, label in _SIGNIFICANCE_LABELS:
        if p < bound:
            return label
    if p < alpha:
        return f"significant (p < {alpha})"
    return "not significant"


class SampleStatistics(ResultModel):
    """Descriptive statistics of one sample, with a 95% confidence interval."""
    count: int
    mean: float = 0.0
    std: float = 0.0
    median: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    ci_lower: float = 0.0
    ci_upper: float = 0.0

    @classmethod
    def of(cls, values: Sequence[float]) -> "SampleStatistics":
        data = np.asarray(values, dtype=float)
        if data.size == 0:
            return cls(count=0)
        mean, lower, upper = confidence_interval(data)
        return cls(
            count=int(data.size),
            mean=mean,
            std=float(data.std(ddof=1)) if data.size > 1 else 0.0,
            median=float(np.median(data)),
            minimum=float(data.min()),
            maximum=float(data.max()),
            ci_lower=lower,
            ci_upper=upper,
        )


class PairedComparison(ResultModel):
    """
    Tests of whether the treatment sample differs from its paired baseline.

    Args:
        difference (float): Mean treatment minus mean baseline.
        t_statistic (float): Paired t-test statistic.
        t_pvalue (float): Paired t-test p-value.
        cohens_d (float): Effect size of the paired differences.
        wilcoxon_statistic (Optional[float]): Only with enough pairs.
        wilcoxon_pvalue (Optional[float]): Only with enough pairs.
    """
    difference: float
    t_statistic: float
    t_pvalue: float
    cohens_d: float
    wilcoxon_statistic: Optional[float] = None
    wilcoxon_pvalue: Optional[float] = None

    @classmethod
    def of(cls, baseline: Sequence[float], treatment: Sequence[float]) -> "PairedComparison":
        t_stat, t_pvalue = paired_t_test(baseline, treatment)
        comparison = cls(
            difference=float(np.mean(treatment) - np.mean(baseline)),
            t_statistic=t_stat,
            t_pvalue=t_pvalue,
            cohens_d=cohens_d(baseline, treatment),
        )
        if len(treatment) >= MIN_WILCOXON_PAIRS:
            comparison.wilcoxon_statistic, comparison.wilcoxon_pvalue = wilcoxon_signed_rank(baseline, treatment)
        return comparison


class StatisticalSummary(ResultModel):
    """
    Describes a treatment sample and, when a paired baseline of the same
    length is given, compares the two.

    For walk-forward analysis the treatment is the out-of-sample returns and
    the baseline the in-sample returns of the same windows.
    """
    metric_name: str = "metric"
    treatment_label: str = "Out-of-sample"
    baseline_label: str = "In-sample"
    treatment: SampleStatistics
    baseline: Optional[SampleStatistics] = None
    comparison: Optional[PairedComparison] = None

    @classmethod
    def compare(
        cls,
        treatment_values: Sequence[float],
        baseline_values: Optional[Sequence[float]] = None,
        metric_name: str = "metric",
        treatment_label: str = "Out-of-sample",
        baseline_label: str = "In-sample",
    ) -> "StatisticalSummary":
        summary = cls(
            metric_name=metric_name,
            treatment_label=treatment_label,
            baseline_label=baseline_label,
            treatment=SampleStatistics.of(treatment_values),
        )
        if baseline_values and len(baseline_values) == len(treatment_values):
            summary.baseline = SampleStatistics.of(baseline_values)
            summary.comparison = PairedComparison.of(baseline_values, treatment_values)
        return summary

    def format_summary(self) -> str:
        """Formats the summary as human-readable text."""
        t = self.treatment
        lines = [f"=== {self.metric_name} ===", f"N = {t.count} windows", ""]
        if t.count == 0:
            lines.append("No data available")
            return "\n".join(lines)

        lines += [
            f"{self.treatment_label}:",
            f"  Mean:   {t.mean:.4f}",
            f"  Std:    {t.std:.4f}",
            f"  95% CI: [{t.ci_lower:.4f}, {t.ci_upper:.4f}]",
            f"  Range:  [{t.minimum:.4f}, {t.maximum:.4f}]",
            f"  Median: {t.median:.4f}",
        ]

        if self.baseline is not None and self.comparison is not None:
            c = self.comparison
            lines += [
                "",
                f"{self.baseline_label}:",
                f"  Mean:   {self.baseline.mean:.4f}",
                f"  Std:    {self.baseline.std:.4f}",
                "",
                "Comparison:",
                f"  Difference:  {c.difference:+.4f}",
                f"  Effect size: {c.cohens_d:.3f} ({describe_effect_size(c.cohens_d)})",
                f"  t-test:      {describe_p_value(c.t_pvalue)} (p={c.t_pvalue:.4f})",
            ]
            if c.wilcoxon_pvalue is not None:
                lines.append(f"  Wilcoxon:    {describe_p_value(c.wilcoxon_pvalue)} (p={c.wilcoxon_pvalue:.4f})")

        return "\n".join(lines)
