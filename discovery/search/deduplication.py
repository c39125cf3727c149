"""Fusion des résultats locaux et externes représentant le même commerce."""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from discovery.config import settings
from discovery.logger import logger
from discovery.models import BusinessResult, ExternalSupplement, SourceCounts
from discovery.scoring.geo import closest_pair_distance
from discovery.scoring.similarity import NameSimilarity, name_similarity


@dataclass
class DedupOutcome:
    """Merged list plus the counts reported in the `sources` block."""
    businesses: List[BusinessResult]
    local_count: int
    external_count: int
    deduplicated: int

    @property
    def sources(self) -> SourceCounts:
        return SourceCounts(
            local=self.local_count,
            external=self.external_count,
            deduplicated=self.deduplicated,
        )


def unique_by_id(results: Iterable[BusinessResult]) -> List[BusinessResult]:
    """Drops repeated ids, first occurrence wins."""
    seen = set()
    unique = []
    for business in results:
        if business.id in seen:
            continue
        seen.add(business.id)
        unique.append(business)
    return unique


class Deduplicator:
    """
    Collapses local/external pairs that are the same real-world business.

    A pair matches when the normalized names are similar enough AND their
    closest locations are within the proximity tolerance; the distance test
    keeps two branches of a chain apart. Matching is greedy in input
    order: each local record consumes at most one external record, and a
    consumed external record is not offered to later local records.

    The local record is always the canonical one. It is re-tagged
    `merged` and only gains the provider supplement; its name, rating,
    categories and other first-party fields are left untouched.
    """

    def __init__(
        self,
        name_threshold: float = settings.DEDUP_NAME_THRESHOLD,
        proximity_meters: float = settings.DEDUP_PROXIMITY_METERS,
        similarity: Optional[NameSimilarity] = None,
    ):
        self.name_threshold = name_threshold
        self.proximity_meters = proximity_meters
        self.similarity = similarity or name_similarity

    def is_same_business(self, local: BusinessResult, external: BusinessResult) -> bool:
        """Both conditions must hold; missing coordinates on either side never match."""
        if not local.name or not external.name:
            return False
        if self.similarity.similarity(local.name, external.name) < self.name_threshold:
            return False
        distance = closest_pair_distance(local.locations, external.locations)
        return distance is not None and distance <= self.proximity_meters

    def merge(self, local: BusinessResult, external: BusinessResult) -> BusinessResult:
        """Local wins; the external side only contributes its supplement block."""
        supplement = external.external or ExternalSupplement(
            place_id=external.id.removeprefix(settings.EXTERNAL_ID_PREFIX),
            rating=external.rating,
            rating_count=external.rating_count,
            photo_url=external.logo_url,
        )
        update = {"source": "merged", "external": supplement}
        if local.distance_meters is None and external.distance_meters is not None:
            update["distance_meters"] = external.distance_meters
        return local.model_copy(update=update)

    def deduplicate(
        self,
        local_results: Iterable[BusinessResult],
        external_results: Iterable[BusinessResult],
    ) -> DedupOutcome:
        """
        Fusionne les deux listes.

        Output order: local records in input order (merged ones in place),
        then unmatched external records in input order. Records already
        tagged `merged` are passed through and never matched again, so
        feeding the output back in changes nothing.
        """
        locals_ = unique_by_id(local_results)
        local_ids = {b.id for b in locals_}
        externals = [b for b in unique_by_id(external_results) if b.id not in local_ids]

        remaining = list(externals)
        combined: List[BusinessResult] = []
        deduplicated = 0

        for local in locals_:
            if local.source == "merged":
                combined.append(local)
                continue

            match_index = None
            for index, external in enumerate(remaining):
                if self.is_same_business(local, external):
                    match_index = index
                    break

            if match_index is None:
                combined.append(local)
                continue

            external = remaining.pop(match_index)
            combined.append(self.merge(local, external))
            deduplicated += 1
            logger.debug(
                "Merged external {external_id} into local {local_id} ({name})",
                external_id=external.id, local_id=local.id, name=local.name,
            )

        combined.extend(remaining)

        return DedupOutcome(
            businesses=combined,
            local_count=len(locals_),
            external_count=len(externals),
            deduplicated=deduplicated,
        )
