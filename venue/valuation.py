from __future__ import annotations
from typing import Mapping, Sequence, Tuple

from .config import EXTERNAL_SCHEMA, INTERNAL_SCHEMA, MetricSpec
from .core import MetricSnapshot, Valuation, frozen_map, get_company, normalize

INTERNAL_SHARE = 0.5
EXTERNAL_SHARE = 0.5


def score_schema(schema: Sequence[MetricSpec], values: Mapping[str, float]) -> Tuple[float, Mapping[str, float]]:
    """Weighted sum of bound-normalized metrics.

    Not divided by the total weight: the weights of each schema sum to ~1,
    so the score's range follows the weight sum.
    """
    score = 0.0
    normalized = {}
    for spec in schema:
        n = normalize(values.get(spec.key, spec.min), spec.min, spec.max)
        normalized[spec.key] = n
        score += n * spec.weight
    return score, frozen_map(normalized)


def valuate(company_id: str, snapshot: MetricSnapshot) -> Valuation:
    company = get_company(company_id)
    internal_score, normalized_internal = score_schema(INTERNAL_SCHEMA, snapshot.internal)
    external_score, normalized_external = score_schema(EXTERNAL_SCHEMA, snapshot.external)
    composite = internal_score * INTERNAL_SHARE + external_score * EXTERNAL_SHARE
    target_price = company.floor + composite * (company.ceiling - company.floor)
    return Valuation(
        internal_score=internal_score,
        external_score=external_score,
        composite_score=composite,
        target_price=target_price,
        normalized_internal=normalized_internal,
        normalized_external=normalized_external,
    )
