"""Tri et pagination des résultats dédupliqués."""
import math
from functools import cmp_to_key
from typing import Any, List, Optional, Sequence, Tuple

from discovery.models import BusinessResult, Pagination, SearchQuery, SortBy, SortOrder


class Ranker:
    """Orders businesses by a requested key with a stable id tie-break."""

    def sort_value(self, business: BusinessResult, sort_by: SortBy) -> Optional[Any]:
        """Valeur de tri ; None se classe toujours en dernier."""
        if sort_by == "reviews":
            return business.rating_count
        if sort_by == "name":
            return business.name.casefold() if business.name else None
        if sort_by == "distance":
            return business.distance_meters
        return business.rating

    def compare_results(
            self,
            a: BusinessResult,
            b: BusinessResult,
            sort_by: SortBy,
            sort_order: SortOrder) -> int:
        """Compare deux résultats pour le tri."""

        # 1) Valeurs nulles en dernier, quel que soit le sens
        value_a = self.sort_value(a, sort_by)
        value_b = self.sort_value(b, sort_by)
        if value_a is None and value_b is not None:
            return 1
        if value_b is None and value_a is not None:
            return -1

        # 2) Clé demandée dans le sens demandé
        if value_a is not None and value_a != value_b:
            order = -1 if value_a < value_b else 1
            return order if sort_order == "asc" else -order

        # 3) Dénouage stable par ID (toujours ascendant)
        if a.id < b.id:
            return -1
        if a.id > b.id:
            return 1
        return 0

    def sort_results(
            self,
            results: Sequence[BusinessResult],
            sort_by: SortBy = "rating",
            sort_order: SortOrder = "desc") -> List[BusinessResult]:
        """Trie les résultats selon la logique de comparaison."""
        return sorted(
            results,
            key=cmp_to_key(lambda a, b: self.compare_results(a, b, sort_by, sort_order)),
        )

    def rank(self, results: Sequence[BusinessResult], query: SearchQuery) -> List[BusinessResult]:
        """Sorts for a query; distance without a location falls back to rating."""
        return self.sort_results(results, query.effective_sort_by, query.sort_order)


def paginate(
    results: Sequence[BusinessResult], page: int, limit: int
) -> Tuple[List[BusinessResult], Pagination]:
    """
    Slices one page out of the full ranked list.

    Pages past the end are empty rather than an error; totals always
    describe the list that was passed in.
    """
    total = len(results)
    total_pages = max(1, math.ceil(total / limit))
    start = (page - 1) * limit
    return list(results[start:start + limit]), Pagination(
        page=page, limit=limit, total=total, total_pages=total_pages
    )
