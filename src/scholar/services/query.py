"""Category-aware search query enhancement."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field
from rich.console import Console

from scholar.models.category import Category
from scholar.models.ids import CategoryId
from scholar.services.youtube import SearchItem, SearchPage, SearchParams, VideoSearchClient
from scholar.utils.text import by_specificity, collapse_whitespace, extract_words, unique

MAX_QUERY_LENGTH = 100
MAX_PRIMARY_KEYWORDS = 5
MAX_SECONDARY_KEYWORDS = 8
MAX_CRITERIA_KEYWORDS = 6

# Substring markers that classify a category for remote search parameters.
CATEGORY_TYPE_MARKERS: Dict[str, tuple[str, ...]] = {
    "tutorial": ("tutorial", "how to", "guide"),
    "beginner": ("beginner", "basic", "intro"),
    "advanced": ("advanced", "expert", "deep"),
    "quick-tip": ("quick", "tip", "short"),
    "course": ("course", "series", "complete"),
    "demo": ("demo", "example", "showcase"),
    "trending": ("trending", "latest", "new"),
    "popular": ("popular", "best", "top"),
}


class EnhancementStrategy(str, Enum):
    CATEGORY_FILTER = "category_filter"
    KEYWORD_BOOST = "keyword_boost"
    QUERY_EXPANSION = "query_expansion"


class CategoryKeywords(BaseModel):
    primary: List[str] = Field(default_factory=list)
    secondary: List[str] = Field(default_factory=list)
    criteria: List[str] = Field(default_factory=list)
    combined: List[str] = Field(default_factory=list)


class SearchEnhancementResult(BaseModel):
    original_query: str
    enhanced_query: str
    extracted_keywords: CategoryKeywords
    applied_categories: List[Category]
    strategy: EnhancementStrategy


class CategorySearchParams(BaseModel):
    video_duration: Optional[str] = None
    order: str = "relevance"
    safe_search: str = "moderate"


class CategorySearchContext(BaseModel):
    selected_categories: List[Category] = Field(default_factory=list)
    enhance_query: bool = True
    max_results: int = Field(default=25, ge=1, le=50)


class CategorySearchResult(BaseModel):
    page: SearchPage
    enhancement: SearchEnhancementResult


class QueryEnhancer:
    """Bias free-text searches toward the user's selected categories."""

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()
        self._keyword_cache: Dict[CategoryId, CategoryKeywords] = {}

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    def extract_category_keywords(self, categories: Sequence[Category]) -> CategoryKeywords:
        """Merge per-category keyword tiers and build the combined list.

        Per-category tiers are cached by category ID until :meth:`clear_cache`.
        """

        primary: List[str] = []
        secondary: List[str] = []
        criteria: List[str] = []
        for category in categories:
            keywords = self._keywords_for(category)
            primary.extend(keywords.primary)
            secondary.extend(keywords.secondary)
            criteria.extend(keywords.criteria)

        primary, secondary, criteria = unique(primary), unique(secondary), unique(criteria)
        return CategoryKeywords(
            primary=primary,
            secondary=secondary,
            criteria=criteria,
            combined=primary[:3] + criteria[:2] + secondary[:2],
        )

    def enhance_search_query(
        self,
        query: str,
        categories: Sequence[Category],
        *,
        should_enhance: bool = True,
        keywords: Optional[CategoryKeywords] = None,
    ) -> SearchEnhancementResult:
        """Append category keywords to ``query``.

        Parameters
        ----------
        query:
            The user's free-text query.
        categories:
            Selected categories supplying keywords.
        should_enhance:
            When ``False`` the query passes through unchanged.
        keywords:
            Pre-extracted keywords; extracted from ``categories`` when omitted.

        Returns
        -------
        SearchEnhancementResult
            ``category_filter`` when nothing was appended, ``keyword_boost`` when the top two
            primary keywords were appended, ``query_expansion`` when a criteria keyword was
            also appended to an already specific query.
        """

        keywords = keywords or self.extract_category_keywords(categories)
        strategy = EnhancementStrategy.CATEGORY_FILTER
        enhanced = query

        if should_enhance and categories and keywords.primary:
            enhanced = f"{query} {' '.join(keywords.primary[:2])}"
            strategy = EnhancementStrategy.KEYWORD_BOOST
            if keywords.criteria and is_specific_query(query):
                enhanced = f"{enhanced} {keywords.criteria[0]}"
                strategy = EnhancementStrategy.QUERY_EXPANSION

        return SearchEnhancementResult(
            original_query=query,
            enhanced_query=cleanup_query(enhanced),
            extracted_keywords=keywords,
            applied_categories=list(categories),
            strategy=strategy,
        )

    def build_category_search_params(self, categories: Sequence[Category]) -> CategorySearchParams:
        types = analyze_category_types(categories)

        video_duration: Optional[str] = None
        if "tutorial" in types or "course" in types:
            video_duration = "medium"
        elif "quick-tip" in types or "demo" in types:
            video_duration = "short"

        if "trending" in types:
            order = "date"
        elif "popular" in types or "beginner" in types:
            order = "viewCount"
        else:
            order = "relevance"

        return CategorySearchParams(video_duration=video_duration, order=order, safe_search="moderate")

    async def search_with_category_enhancement(
        self,
        query: str,
        context: CategorySearchContext,
        client: VideoSearchClient,
    ) -> CategorySearchResult:
        """Enhance ``query``, search with category-derived parameters, and tag matching results."""

        categories = context.selected_categories
        enhancement = self.enhance_search_query(query, categories, should_enhance=context.enhance_query)
        category_params = self.build_category_search_params(categories)
        params = SearchParams(
            max_results=context.max_results,
            order=category_params.order,
            video_duration=category_params.video_duration,
            safe_search=category_params.safe_search,
        )

        self._console.log(f"Searching for [bold]{enhancement.enhanced_query}[/bold] ({enhancement.strategy.value})")
        page = await client.search(enhancement.enhanced_query, params)

        tagged = [
            item.model_copy(update={"category_ids": self.match_categories(_item_text(item), categories)})
            for item in page.items
        ]
        return CategorySearchResult(page=page.model_copy(update={"items": tagged}), enhancement=enhancement)

    def match_categories(self, text: str, categories: Iterable[Category]) -> List[CategoryId]:
        """Return IDs of categories whose keywords appear in ``text``."""

        haystack = text.lower()
        matched: List[CategoryId] = []
        for category in categories:
            terms = self._keywords_for(category).primary + [keyword.lower() for keyword in category.keywords]
            if any(term and term in haystack for term in terms):
                matched.append(category.category_id)
        return matched

    def get_search_suggestions(self, categories: Sequence[Category], partial_query: str = "") -> List[str]:
        if not categories:
            return []

        suggestions: List[str] = []
        for category in categories:
            keywords = self._keywords_for(category)
            suggestions.extend(
                [f"{category.name} tutorial", f"{category.name} guide", f"{category.name} basics"]
            )
            if keywords.criteria:
                suggestions.append(f"{keywords.criteria[0]} {category.name}")

        needle = partial_query.strip().lower()
        if needle:
            return [suggestion for suggestion in suggestions if needle in suggestion.lower()][:5]
        return suggestions[:8]

    def clear_cache(self) -> None:
        self._keyword_cache.clear()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                    #
    # ------------------------------------------------------------------ #
    def _keywords_for(self, category: Category) -> CategoryKeywords:
        cached = self._keyword_cache.get(category.category_id)
        if cached is None:
            cached = extract_single_category_keywords(category)
            self._keyword_cache[category.category_id] = cached
        return cached


def _ranked_words(text: str) -> List[str]:
    return by_specificity(unique(extract_words(text, min_length=2)))


def extract_single_category_keywords(category: Category) -> CategoryKeywords:
    primary = [word for word in _ranked_words(category.name) if len(word) > 2][:MAX_PRIMARY_KEYWORDS]
    secondary = [
        word for word in _ranked_words(category.description) if len(word) > 3 and word not in primary
    ][:MAX_SECONDARY_KEYWORDS]
    criteria = [
        word
        for word in _ranked_words(category.criteria)
        if len(word) > 3 and word not in primary and word not in secondary
    ][:MAX_CRITERIA_KEYWORDS]
    return CategoryKeywords(primary=primary, secondary=secondary, criteria=criteria)


def is_specific_query(query: str) -> bool:
    words = query.split()
    return len(words) >= 2 and any(len(word) > 4 for word in words)


def cleanup_query(query: str) -> str:
    return collapse_whitespace(query)[:MAX_QUERY_LENGTH]


def analyze_category_types(categories: Iterable[Category]) -> List[str]:
    types: List[str] = []
    for category in categories:
        text = f"{category.name} {category.description} {category.criteria}".lower()
        for category_type, markers in CATEGORY_TYPE_MARKERS.items():
            if any(marker in text for marker in markers):
                types.append(category_type)
    return unique(types)


def _item_text(item: SearchItem) -> str:
    return f"{item.title} {item.description} {' '.join(item.tags)}"


__all__ = [
    "CategoryKeywords",
    "CategorySearchContext",
    "CategorySearchParams",
    "CategorySearchResult",
    "EnhancementStrategy",
    "QueryEnhancer",
    "SearchEnhancementResult",
    "analyze_category_types",
    "cleanup_query",
    "extract_single_category_keywords",
    "is_specific_query",
]
