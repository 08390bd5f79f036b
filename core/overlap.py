"""
Overlap Detector - Duplicate and overlapping boundary detection.

For every registered parcel:
1. Bounding-box prune (cheap, skips most of the registry)
2. Exact-duplicate check (same ring, any start point or direction) -> 100%
3. Intersection area / smaller of the two areas

The smaller area is the denominator so a small parcel swallowed by a large
claim reports ~100% rather than a negligible share of the big one.

Detection is pure: it never deletes or notifies. See core.remediation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

from core.geometry import (
    BoundingBox,
    Polygon,
    area,
    bounding_box,
    bounds_overlap,
    intersection_area,
    is_exactly_equal,
    polygon_similarity,
)
from core.models import FraudSignal, OverlapDecision, OverlapPair, OverlapResult, ParcelCandidate

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# POLICY
# ═══════════════════════════════════════════════════════════════════════════
NOISE_THRESHOLD_PERCENT = 1.0      # overlaps at or below this are boundary noise
BLOCKING_THRESHOLD_PERCENT = 20.0  # overlaps above this block the submission
MAX_REPORTED_OVERLAPS = 5
REVIEW_THRESHOLD_PERCENT = 10.0    # registry scan reporting floor

# Below this many candidates the thread pool costs more than it saves
PARALLEL_MIN_CANDIDATES = 200
MAX_WORKERS = 4

# (threshold, score) for similar_polygon fraud signals, checked in order
SIMILARITY_SIGNAL_BANDS = [
    (80.0, 18),
    (20.0, 12),
    (5.0, 5),
]
DUPLICATE_SIGNAL_SCORE = 20


def is_blocking(percentage: float) -> bool:
    return percentage > BLOCKING_THRESHOLD_PERCENT


def overlap_percentage(shared_m2: float, area1_m2: float, area2_m2: float) -> float:
    """Shared area as a percentage of the smaller polygon."""
    smaller = min(area1_m2, area2_m2)
    if smaller <= 0:
        return 0.0
    return shared_m2 / smaller * 100


# ═══════════════════════════════════════════════════════════════════════════
# PER-CANDIDATE COMPARISON
# ═══════════════════════════════════════════════════════════════════════════
def compare_candidate(
    new_polygon: Polygon,
    new_bbox: BoundingBox,
    new_area: float,
    candidate: ParcelCandidate,
) -> Optional[Tuple[float, OverlapResult]]:
    """
    Compare the new boundary against one registered parcel.

    Returns:
        (raw_percentage, result) when the overlap is above the noise floor,
        None when pruned, disjoint, touching or negligible.
    """
    if not bounds_overlap(new_bbox, bounding_box(candidate.polygon)):
        return None

    candidate_area = area(candidate.polygon)

    if is_exactly_equal(new_polygon, candidate.polygon):
        log.info(f"Exact duplicate of parcel {candidate.parcel_id}")
        percentage = 100.0
        shared = candidate_area
    else:
        shared = intersection_area(new_polygon, candidate.polygon)
        if shared <= 0:
            return None
        percentage = overlap_percentage(shared, new_area, candidate_area)
        log.debug(f"Overlap with {candidate.parcel_id}: {percentage:.2f}% ({shared:.2f} m²)")

    if percentage <= NOISE_THRESHOLD_PERCENT:
        return None

    result = OverlapResult(
        other_parcel_id=candidate.parcel_id,
        other_parcel_title=candidate.title or "Unknown Property",
        owner_ref=candidate.owner_ref,
        overlap_percentage=round(percentage, 1),
        overlap_area_m2=shared,
        other_polygon=candidate.polygon,
    )
    return percentage, result


def _compare_all(
    new_polygon: Polygon,
    candidates: Sequence[ParcelCandidate],
) -> List[Tuple[float, OverlapResult]]:
    new_bbox = bounding_box(new_polygon)
    new_area = area(new_polygon)

    def compare(candidate: ParcelCandidate):
        return compare_candidate(new_polygon, new_bbox, new_area, candidate)

    if len(candidates) >= PARALLEL_MIN_CANDIDATES:
        with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
            # map() yields in submission order, so the reduction is deterministic
            compared = list(executor.map(compare, candidates))
    else:
        compared = [compare(c) for c in candidates]

    return [item for item in compared if item is not None]


# ═══════════════════════════════════════════════════════════════════════════
# DECISION
# ═══════════════════════════════════════════════════════════════════════════
def _decision_message(blocking: bool, retained: List[Tuple[float, OverlapResult]], max_pct: float) -> str:
    if blocking:
        worst = retained[0][1]
        return (
            f"This property overlaps {max_pct:.1f}% with an existing listing "
            f"({worst.other_parcel_title}). Properties cannot overlap more than "
            f"{BLOCKING_THRESHOLD_PERCENT:.0f}%."
        )
    if retained:
        return f"Warning: Minor overlap detected ({max_pct:.1f}%) with existing properties."
    return "No overlaps detected."


def detect_overlaps(new_polygon: Polygon, candidates: Sequence[ParcelCandidate]) -> OverlapDecision:
    """
    Compute the overlap decision for a submitted boundary.

    Args:
        new_polygon: The parsed submission
        candidates: Registered parcels (already excluding the submission itself)

    Returns:
        OverlapDecision with at most MAX_REPORTED_OVERLAPS results, worst first
    """
    retained = _compare_all(new_polygon, candidates)
    # sorted() is stable: equal percentages keep candidate order
    retained = sorted(retained, key=lambda item: item[0], reverse=True)

    max_pct = round(retained[0][0], 1) if retained else 0.0
    blocking = any(is_blocking(pct) for pct, _ in retained)

    decision = OverlapDecision(
        can_proceed=not blocking,
        has_overlaps=bool(retained),
        max_overlap_percentage=max_pct,
        top_overlaps=tuple(result for _, result in retained[:MAX_REPORTED_OVERLAPS]),
        message=_decision_message(blocking, retained, max_pct),
    )

    log.info(
        f"Overlap check against {len(candidates)} parcels: "
        f"{len(retained)} overlaps, max {max_pct:.1f}%, can_proceed={decision.can_proceed}"
    )
    return decision


# ═══════════════════════════════════════════════════════════════════════════
# FRAUD SIGNALS
# ═══════════════════════════════════════════════════════════════════════════
def detect_fraud_signals(new_polygon: Polygon, candidates: Sequence[ParcelCandidate]) -> List[FraudSignal]:
    """
    Raise duplicate/similar boundary signals for fraud review.

    Uses the same min-area overlap measure as the detector, with graded
    scores instead of a single block threshold.
    """
    signals = []
    new_bbox = bounding_box(new_polygon)
    new_area = area(new_polygon)

    for candidate in candidates:
        if not bounds_overlap(new_bbox, bounding_box(candidate.polygon)):
            continue

        if is_exactly_equal(new_polygon, candidate.polygon):
            signals.append(FraudSignal(
                signal_type="duplicate_polygon",
                signal_score=DUPLICATE_SIGNAL_SCORE,
                details=f"Exact duplicate of listing {candidate.parcel_id}",
                other_parcel_id=candidate.parcel_id,
            ))
            continue

        shared = intersection_area(new_polygon, candidate.polygon)
        if shared <= 0:
            continue
        percentage = overlap_percentage(shared, new_area, area(candidate.polygon))

        for threshold, score in SIMILARITY_SIGNAL_BANDS:
            if percentage > threshold:
                signals.append(FraudSignal(
                    signal_type="similar_polygon",
                    signal_score=score,
                    details=(f"{percentage:.1f}% overlap with listing {candidate.parcel_id} "
                         f"(similarity {polygon_similarity(new_polygon, candidate.polygon)}/100)"),
                    other_parcel_id=candidate.parcel_id,
                ))
                break

    if signals:
        log.info(f"Raised {len(signals)} fraud signals")
    return signals


# ═══════════════════════════════════════════════════════════════════════════
# REGISTRY SCAN
# ═══════════════════════════════════════════════════════════════════════════
def scan_overlap_pairs(
    candidates: Sequence[ParcelCandidate],
    min_percentage: float = REVIEW_THRESHOLD_PERCENT,
) -> List[OverlapPair]:
    """
    Find every pair of registered parcels that overlap by at least min_percentage.

    Feeds the admin overlap review surface. Pairs are sorted worst first.
    """
    boxes = [bounding_box(c.polygon) for c in candidates]
    areas = [area(c.polygon) for c in candidates]
    pairs = []

    for i, j in combinations(range(len(candidates)), 2):
        if not bounds_overlap(boxes[i], boxes[j]):
            continue
        first, second = candidates[i], candidates[j]

        if is_exactly_equal(first.polygon, second.polygon):
            shared = areas[i]
            percentage = 100.0
        else:
            shared = intersection_area(first.polygon, second.polygon)
            if shared <= 0:
                continue
            percentage = overlap_percentage(shared, areas[i], areas[j])

        if percentage >= min_percentage:
            pairs.append(OverlapPair(
                first_id=first.parcel_id,
                first_title=first.title,
                second_id=second.parcel_id,
                second_title=second.title,
                overlap_percentage=round(percentage, 1),
                overlap_area_m2=shared,
                is_blocking=is_blocking(percentage),
            ))

    pairs.sort(key=lambda p: p.overlap_percentage, reverse=True)
    log.info(f"Registry scan of {len(candidates)} parcels found {len(pairs)} overlapping pairs")
    return pairs
