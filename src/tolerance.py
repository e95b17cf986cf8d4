"""
tolerance.py

Tolerance analysis services: feature distributions, stackup evaluation,
sensitivity and process capability.

Services
--------
- DistributionEngine   – Per-feature variance and seeded sampling
- StackupEvaluator     – Worst-case, RSS and Monte Carlo evaluation of a stackup
- SensitivityAnalyzer  – Analytic variance contribution of each stackup term
- CapabilityAnalyzer   – Cp / Cpk / Pp / Ppk / Cpm, yield and sigma level

Design notes
------------
- A stackup is the signed linear combination Σ dᵢ·hᵢ·Xᵢ, where dᵢ is the
  contribution direction and hᵢ is ½ for half-counted features.
- All sampling goes through numpy.random.default_rng; the same seed and sample
  count reproduce the same samples, moments and percentile ladder.
- Analyzers are pure. Features and stackups are never mutated.
- Capability indices are math.inf (or -math.inf) when the sample standard
  deviation is zero; None when the index is undefined for the given limits.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from errors import ReferenceNotFoundError, ValidationError
from model import (
    AnalysisMethod,
    Distribution,
    Feature,
    ImpactLevel,
    MonteCarloSettings,
    QualityRating,
    SpecLimits,
    Stackup,
    StackupContribution,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

PERCENTILE_LADDER: Tuple[float, ...] = (0.1, 1.0, 5.0, 10.0, 25.0, 50.0, 75.0, 90.0, 95.0, 99.0, 99.9)

# (minimum yield, sigma level), best first
SIGMA_STEPS: Tuple[Tuple[float, int], ...] = (
    (0.9999966, 6),
    (0.999937, 5),
    (0.9987, 4),
    (0.9973, 3),
    (0.9545, 2),
)

# (minimum index, rating), best first
RATING_STEPS: Tuple[Tuple[float, QualityRating], ...] = (
    (1.67, QualityRating.EXCELLENT),
    (1.33, QualityRating.GOOD),
    (1.0, QualityRating.ADEQUATE),
    (0.67, QualityRating.MARGINAL),
)

_RATING_ORDER: List[QualityRating] = [
    QualityRating.EXCELLENT,
    QualityRating.GOOD,
    QualityRating.ADEQUATE,
    QualityRating.MARGINAL,
    QualityRating.POOR,
]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class WorstCaseResult:
    nominal: float
    plus_tolerance: float
    minus_tolerance: float

    @property
    def upper_limit(self) -> float:
        return self.nominal + self.plus_tolerance

    @property
    def lower_limit(self) -> float:
        return self.nominal - self.minus_tolerance


@dataclass
class RSSResult:
    nominal: float
    tolerance: float        # symmetric ± tolerance (3σ)
    std_dev: float

    @property
    def upper_limit(self) -> float:
        return self.nominal + self.tolerance

    @property
    def lower_limit(self) -> float:
        return self.nominal - self.tolerance


@dataclass
class MonteCarloResult:
    mean: float
    std_dev: float
    variance: float
    min: float
    max: float
    range: float
    sample_size: int
    seed: Optional[int] = None
    percentiles: Dict[float, float] = field(default_factory=dict)
    samples: np.ndarray = field(default=None, repr=False, compare=False)


@dataclass
class CapabilityReport:
    sample_size: int
    mean: float
    std_dev: float
    cp: Optional[float] = None
    cpk: Optional[float] = None
    cpu: Optional[float] = None
    cpl: Optional[float] = None
    pp: Optional[float] = None
    ppk: Optional[float] = None
    cpm: Optional[float] = None
    yield_fraction: float = 1.0
    defect_rate: float = 0.0
    ppm_defects: float = 0.0
    ppm_above_usl: float = 0.0
    ppm_below_lsl: float = 0.0
    sigma_level: int = 6
    cp_rating: Optional[QualityRating] = None
    cpk_rating: Optional[QualityRating] = None
    overall_rating: QualityRating = QualityRating.POOR
    recommendations: List[str] = field(default_factory=list)


@dataclass
class StackupResult:
    stackup_id: uuid.UUID
    nominal: float
    worst_case: Optional[WorstCaseResult] = None
    rss: Optional[RSSResult] = None
    monte_carlo: Optional[MonteCarloResult] = None
    capability: Optional[CapabilityReport] = None


@dataclass
class ContributionSensitivity:
    feature_id: uuid.UUID
    feature_name: str
    component_id: Optional[uuid.UUID]
    multiplier: float
    variance: float
    std_dev: float
    percentage: float
    rank: int
    impact: ImpactLevel


@dataclass
class SensitivityReport:
    stackup_id: uuid.UUID
    total_variance: float
    total_std_dev: float
    contributions: List[ContributionSensitivity] = field(default_factory=list)    # rank order


@dataclass
class ToleranceImprovement:
    feature_id: uuid.UUID
    feature_name: str
    current_percentage: float
    scale_factor: float                 # multiply both tolerances by this
    expected_variance: float


# ---------------------------------------------------------------------------
# DistributionEngine
# ---------------------------------------------------------------------------

class DistributionEngine:
    """
    Variance and sampling for a single feature.

    The normal and log-normal laws put the tolerance band at ±3σ; uniform and
    triangular laws span the band exactly.

    The log-normal law is centred on ln(nominal) with log-space shape
    width / (6 * nominal), the coefficient of variation of the ±3σ band. Its
    linear-space spread is therefore close to width / 6, like the normal law;
    the literal |ln(width / nominal / 6)| is not a spread and is not used.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    @staticmethod
    def validate_feature(feature: Feature) -> Feature:
        if feature.plus_tolerance < 0 or feature.minus_tolerance < 0:
            raise ValidationError(
                f"Feature '{feature.name}': tolerances must be non-negative magnitudes."
            )
        if feature.distribution == Distribution.LOG_NORMAL:
            if feature.nominal <= 0:
                raise ValidationError(
                    f"Feature '{feature.name}': log-normal distribution requires a positive nominal."
                )
            if feature.lower_limit <= 0:
                raise ValidationError(
                    f"Feature '{feature.name}': log-normal distribution requires a positive lower limit."
                )
        return feature

    @staticmethod
    def sigma(feature: Feature) -> float:
        return (feature.plus_tolerance + feature.minus_tolerance) / 6.0

    @classmethod
    def variance(cls, feature: Feature) -> float:
        width = feature.plus_tolerance + feature.minus_tolerance
        if feature.distribution == Distribution.UNIFORM:
            return width ** 2 / 12.0
        if feature.distribution == Distribution.TRIANGULAR:
            return width ** 2 / 24.0
        return cls.sigma(feature) ** 2

    def sample_feature(self, feature: Feature) -> float:
        """A single draw."""
        return float(self.sample_many(feature, 1)[0])

    def sample_many(self, feature: Feature, count: int) -> np.ndarray:
        width = feature.plus_tolerance + feature.minus_tolerance
        if width == 0:
            return np.full(count, feature.nominal, dtype=float)

        if feature.distribution == Distribution.UNIFORM:
            return self._rng.uniform(feature.lower_limit, feature.upper_limit, count)
        if feature.distribution == Distribution.TRIANGULAR:
            return self._rng.triangular(
                feature.lower_limit, feature.nominal, feature.upper_limit, count
            )
        if feature.distribution == Distribution.LOG_NORMAL:
            shape = width / (6.0 * feature.nominal)
            return self._rng.lognormal(math.log(feature.nominal), shape, count)
        return self._rng.normal(feature.nominal, self.sigma(feature), count)


# ---------------------------------------------------------------------------
# StackupEvaluator
# ---------------------------------------------------------------------------

FeatureSource = Union[Mapping[uuid.UUID, Feature], Iterable[Feature]]


def _feature_index(features: FeatureSource) -> Dict[uuid.UUID, Feature]:
    if isinstance(features, Mapping):
        return dict(features)
    return {f.id: f for f in features}


def _resolve_terms(
    stackup: Stackup, features: FeatureSource
) -> List[Tuple[StackupContribution, Feature]]:
    """Pair each contribution with its validated feature, in stackup order."""
    if not stackup.contributions:
        raise ValidationError(f"Stackup '{stackup.name}' has no contributions.")
    index = _feature_index(features)
    terms: List[Tuple[StackupContribution, Feature]] = []
    for contribution in stackup.contributions:
        feature = index.get(contribution.feature_id)
        if feature is None:
            raise ReferenceNotFoundError(
                f"Feature {contribution.feature_id} referenced by stackup '{stackup.name}' not found."
            )
        terms.append((contribution, DistributionEngine.validate_feature(feature)))
    return terms


def percentile(sorted_samples: np.ndarray, pct: float) -> float:
    """Nearest-rank percentile on an ascending sample vector."""
    n = len(sorted_samples)
    index = int(math.floor(pct / 100.0 * (n - 1) + 0.5))
    return float(sorted_samples[min(max(index, 0), n - 1)])


class StackupEvaluator:
    """
    Evaluates a stackup by the closed-form methods and by Monte Carlo.
    """

    CHUNK_SIZE = 1000
    MIN_REPORT_GAP = 100

    def nominal(self, stackup: Stackup, features: FeatureSource) -> float:
        return sum(c.multiplier * f.nominal for c, f in _resolve_terms(stackup, features))

    def worst_case(self, stackup: Stackup, features: FeatureSource) -> WorstCaseResult:
        """Arithmetic tolerance sum; a negative multiplier swaps the feature's sides."""
        nominal = plus = minus = 0.0
        for contribution, feature in _resolve_terms(stackup, features):
            m = contribution.multiplier
            nominal += m * feature.nominal
            if m >= 0:
                plus += m * feature.plus_tolerance
                minus += m * feature.minus_tolerance
            else:
                plus += -m * feature.minus_tolerance
                minus += -m * feature.plus_tolerance
        return WorstCaseResult(nominal=nominal, plus_tolerance=plus, minus_tolerance=minus)

    def rss(self, stackup: Stackup, features: FeatureSource) -> RSSResult:
        """Root-sum-square of the mean half-band of every term, applied symmetrically."""
        nominal = 0.0
        squares = 0.0
        for contribution, feature in _resolve_terms(stackup, features):
            m = contribution.multiplier
            nominal += m * feature.nominal
            half_band = (feature.plus_tolerance + feature.minus_tolerance) / 2.0
            squares += (m * half_band) ** 2
        tolerance = math.sqrt(squares)
        return RSSResult(nominal=nominal, tolerance=tolerance, std_dev=tolerance / 3.0)

    def monte_carlo(
        self,
        stackup: Stackup,
        features: FeatureSource,
        settings: Optional[MonteCarloSettings] = None,
        callback: Optional[ProgressCallback] = None,
    ) -> MonteCarloResult:
        """
        Sample the stackup `sample_count` times.

        Draws are made in chunks of CHUNK_SIZE samples per feature, a tail
        shorter than MIN_REPORT_GAP being merged into the last full chunk;
        `callback` receives (completed, total) after every chunk and must not
        call back into the evaluator.
        """
        settings = (settings or stackup.mc_settings).validate()
        terms = _resolve_terms(stackup, features)
        engine = DistributionEngine(settings.seed)
        total = settings.sample_count
        samples = np.zeros(total, dtype=float)

        for start, size in self._chunks(total):
            chunk = samples[start:start + size]
            for contribution, feature in terms:
                chunk += contribution.multiplier * engine.sample_many(feature, size)
            if callback is not None:
                callback(start + size, total)

        ordered = np.sort(samples)
        std_dev = float(samples.std(ddof=1)) if total > 1 else 0.0
        logger.debug("Monte Carlo on stackup '%s': %d samples, seed=%s", stackup.name, total, settings.seed)
        return MonteCarloResult(
            mean=float(samples.mean()),
            std_dev=std_dev,
            variance=std_dev ** 2,
            min=float(ordered[0]),
            max=float(ordered[-1]),
            range=float(ordered[-1] - ordered[0]),
            sample_size=total,
            seed=settings.seed,
            percentiles={p: percentile(ordered, p) for p in PERCENTILE_LADDER},
            samples=samples,
        )

    def _chunks(self, total: int) -> List[Tuple[int, int]]:
        bounds = [
            (start, min(self.CHUNK_SIZE, total - start))
            for start in range(0, total, self.CHUNK_SIZE)
        ]
        if len(bounds) > 1 and bounds[-1][1] < self.MIN_REPORT_GAP:
            tail = bounds.pop()
            start, size = bounds.pop()
            bounds.append((start, size + tail[1]))
        return bounds

    def analyze(
        self,
        stackup: Stackup,
        features: FeatureSource,
        methods: Optional[Sequence[AnalysisMethod]] = None,
        settings: Optional[MonteCarloSettings] = None,
        spec_limits: Optional[SpecLimits] = None,
        callback: Optional[ProgressCallback] = None,
    ) -> StackupResult:
        """
        Run the requested methods (default: the stackup's own). When Monte
        Carlo runs and at least one spec limit is set, the samples are also
        put through capability analysis.
        """
        methods = list(methods or stackup.methods)
        limits = (spec_limits or stackup.spec_limits).validate()
        index = _feature_index(features)

        result = StackupResult(stackup_id=stackup.id, nominal=self.nominal(stackup, index))
        if AnalysisMethod.WORST_CASE in methods:
            result.worst_case = self.worst_case(stackup, index)
        if AnalysisMethod.RSS in methods:
            result.rss = self.rss(stackup, index)
        if AnalysisMethod.MONTE_CARLO in methods:
            result.monte_carlo = self.monte_carlo(stackup, index, settings, callback)
            if limits.lsl is not None or limits.usl is not None:
                result.capability = CapabilityAnalyzer().analyze(result.monte_carlo.samples, limits)
        return result


# ---------------------------------------------------------------------------
# SensitivityAnalyzer
# ---------------------------------------------------------------------------

def _impact(percentage: float) -> ImpactLevel:
    if percentage >= 50.0:
        return ImpactLevel.HIGH
    if percentage >= 25.0:
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


class SensitivityAnalyzer:
    """
    Analytic variance decomposition: Vᵢ = (dᵢ·hᵢ)²·Var(Xᵢ).
    """

    def analyze(self, stackup: Stackup, features: FeatureSource) -> SensitivityReport:
        terms = _resolve_terms(stackup, features)
        variances = [c.multiplier ** 2 * DistributionEngine.variance(f) for c, f in terms]
        total = sum(variances)
        percentages = [v / total * 100.0 if total > 0 else 0.0 for v in variances]

        # sorted() is stable, so equal shares keep stackup order
        order = sorted(range(len(terms)), key=lambda i: -percentages[i])
        contributions = []
        for rank, i in enumerate(order, start=1):
            contribution, feature = terms[i]
            contributions.append(
                ContributionSensitivity(
                    feature_id=feature.id,
                    feature_name=feature.name,
                    component_id=contribution.component_id,
                    multiplier=contribution.multiplier,
                    variance=variances[i],
                    std_dev=math.sqrt(variances[i]),
                    percentage=percentages[i],
                    rank=rank,
                    impact=_impact(percentages[i]),
                )
            )
        return SensitivityReport(
            stackup_id=stackup.id,
            total_variance=total,
            total_std_dev=math.sqrt(total),
            contributions=contributions,
        )

    def critical_contributions(
        self, report: SensitivityReport, threshold_pct: float = 25.0
    ) -> List[ContributionSensitivity]:
        return [c for c in report.contributions if c.percentage >= threshold_pct]

    def cumulative_percentages(self, report: SensitivityReport) -> List[Tuple[uuid.UUID, float]]:
        running = 0.0
        result = []
        for c in report.contributions:
            running += c.percentage
            result.append((c.feature_id, running))
        return result

    def suggest_improvements(
        self, report: SensitivityReport, target_reduction: float = 0.2
    ) -> List[ToleranceImprovement]:
        """
        Tolerance scale factors that cut each major contributor's variance by
        `target_reduction` (a fraction in (0, 1)).
        """
        if not (0.0 < target_reduction < 1.0):
            raise ValidationError("target_reduction must be between 0 and 1 (exclusive).")
        factor = math.sqrt(1.0 - target_reduction)
        return [
            ToleranceImprovement(
                feature_id=c.feature_id,
                feature_name=c.feature_name,
                current_percentage=c.percentage,
                scale_factor=factor,
                expected_variance=c.variance * factor ** 2,
            )
            for c in report.contributions
            if c.percentage >= 10.0
        ]


# ---------------------------------------------------------------------------
# CapabilityAnalyzer
# ---------------------------------------------------------------------------

def _index(numerator: float, spread: float) -> float:
    if spread > 0:
        return numerator / spread
    return math.inf if numerator >= 0 else -math.inf


def rate(index: Optional[float]) -> Optional[QualityRating]:
    if index is None:
        return None
    for minimum, rating in RATING_STEPS:
        if index >= minimum:
            return rating
    return QualityRating.POOR


def sigma_level(yield_fraction: float) -> int:
    for minimum, level in SIGMA_STEPS:
        if yield_fraction >= minimum:
            return level
    return 1


_RATING_ADVICE: Dict[QualityRating, str] = {
    QualityRating.EXCELLENT: "Process is highly capable; maintain current controls.",
    QualityRating.GOOD: "Process is capable; monitor for drift.",
    QualityRating.ADEQUATE: "Process is marginally capable; look for variation reductions.",
    QualityRating.MARGINAL: "Process capability is marginal; corrective action recommended.",
    QualityRating.POOR: "Process is not capable; immediate corrective action required.",
}


class CapabilityAnalyzer:

    def analyze(self, samples: Sequence[float], limits: SpecLimits) -> CapabilityReport:
        limits.validate()
        x = np.asarray(samples, dtype=float)
        if x.size < 2:
            raise ValidationError("Capability analysis needs at least two samples.")

        mean = float(x.mean())
        std = float(x.std(ddof=1))
        lsl, usl, target = limits.lsl, limits.usl, limits.target
        report = CapabilityReport(sample_size=int(x.size), mean=mean, std_dev=std)

        if usl is not None:
            report.cpu = _index(usl - mean, 3.0 * std)
        if lsl is not None:
            report.cpl = _index(mean - lsl, 3.0 * std)
        if lsl is not None and usl is not None:
            report.cp = _index(usl - lsl, 6.0 * std)
            report.cpk = min(report.cpu, report.cpl)
            if target is not None:
                report.cpm = _index(usl - lsl, 6.0 * math.sqrt(std ** 2 + (mean - target) ** 2))
        else:
            report.cpk = report.cpu if report.cpu is not None else report.cpl
        report.pp, report.ppk = report.cp, report.cpk

        below = float(np.mean(x < lsl)) if lsl is not None else 0.0
        above = float(np.mean(x > usl)) if usl is not None else 0.0
        report.yield_fraction = 1.0 - below - above
        report.defect_rate = below + above
        report.ppm_defects = report.defect_rate * 1e6
        report.ppm_below_lsl = below * 1e6
        report.ppm_above_usl = above * 1e6
        report.sigma_level = sigma_level(report.yield_fraction)

        report.cp_rating = rate(report.cp)
        report.cpk_rating = rate(report.cpk)
        defined = [r for r in (report.cp_rating, report.cpk_rating) if r is not None]
        report.overall_rating = (
            max(defined, key=_RATING_ORDER.index) if defined else QualityRating.POOR
        )
        report.recommendations = self._recommend(report)
        logger.debug(
            "Capability over %d samples: cp=%s cpk=%s yield=%.6f",
            report.sample_size, report.cp, report.cpk, report.yield_fraction,
        )
        return report

    @staticmethod
    def _recommend(report: CapabilityReport) -> List[str]:
        advice = [_RATING_ADVICE[report.overall_rating]]
        if report.cp is not None and report.cpk is not None and report.cp > report.cpk + 0.2:
            advice.append("Process is not well centred; shift the mean toward the target.")
        if report.cp is not None and report.cp < 1.33:
            advice.append("Process spread is too wide; reduce variation.")
        if report.sigma_level < 3:
            advice.append("Sigma level is below 3; review the process and its tolerances.")
        if report.ppm_defects > 1000:
            advice.append(
                f"Defect rate of {report.ppm_defects:.0f} PPM exceeds 1000; inspect before release."
            )
        return advice


# ---------------------------------------------------------------------------
# Text reports
# ---------------------------------------------------------------------------

def _fmt_index(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.3f}"


def render_capability_report(report: CapabilityReport) -> str:
    lines = [
        "Process Capability Report",
        "=========================",
        f"Samples:      {report.sample_size}",
        f"Mean:         {report.mean:.6f}",
        f"Std dev:      {report.std_dev:.6f}",
        "",
        f"Cp:   {_fmt_index(report.cp):>8}   ({report.cp_rating.value if report.cp_rating else 'n/a'})",
        f"Cpk:  {_fmt_index(report.cpk):>8}   ({report.cpk_rating.value if report.cpk_rating else 'n/a'})",
        f"CPU:  {_fmt_index(report.cpu):>8}",
        f"CPL:  {_fmt_index(report.cpl):>8}",
        f"Cpm:  {_fmt_index(report.cpm):>8}",
        "",
        f"Yield:        {report.yield_fraction * 100:.4f}%",
        f"PPM defects:  {report.ppm_defects:.1f} (above USL {report.ppm_above_usl:.1f}, below LSL {report.ppm_below_lsl:.1f})",
        f"Sigma level:  {report.sigma_level}",
        f"Rating:       {report.overall_rating.value}",
        "",
        "Recommendations:",
    ]
    lines.extend(f"  - {r}" for r in report.recommendations)
    return "\n".join(lines)


def render_sensitivity_report(report: SensitivityReport) -> str:
    lines = [
        "Sensitivity Report",
        "==================",
        f"Total variance: {report.total_variance:.6g}",
        f"Total std dev:  {report.total_std_dev:.6g}",
        "",
        f"{'Rank':>4}  {'Feature':<24} {'Mult':>6} {'Std dev':>10} {'Share':>8}  Impact",
    ]
    for c in report.contributions:
        lines.append(
            f"{c.rank:>4}  {c.feature_name[:24]:<24} {c.multiplier:>6.2f} "
            f"{c.std_dev:>10.4g} {c.percentage:>7.2f}%  {c.impact.value}"
        )
    return "\n".join(lines)
