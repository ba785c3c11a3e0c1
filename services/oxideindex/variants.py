"""
Search-variant generation.

Code search serves at most 1000 results (10 pages of 100) for any query. The
crawl therefore runs a fixed, ordered list of query variants that slice the
result space by orthogonal qualifiers (fork status, file extension, size
buckets, language, sort order) so results outside one window become
reachable. The list order is the resume sequence stored in the crawl state.
"""

from __future__ import annotations

from .models import SearchVariant


SIZE_BUCKETS = [
    ("size-small", "size:<10000"),
    ("size-medium", "size:10000..50000"),
    ("size-large", "size:>50000"),
    ("size-tiny", "size:<1000"),
    ("size-small-2", "size:1000..5000"),
    ("size-small-3", "size:5000..10000"),
    ("size-medium-2", "size:50000..100000"),
    ("size-large-2", "size:100000..200000"),
    ("size-huge", "size:>200000"),
]

FORK_SIZE_BUCKETS = [
    ("small", "size:<10000"),
    ("medium", "size:10000..50000"),
    ("large", "size:>50000"),
]


def _join(*parts: str) -> str:
    return " ".join(p for p in parts if p)


def _without(query: str, prefix: str) -> str:
    """Drop every qualifier token starting with prefix."""
    return " ".join(tok for tok in query.split() if not tok.lower().startswith(prefix.lower()))


def _with_language(query: str, language: str) -> str:
    return _join(_without(query, "language:"), f"language:{language}")


def build_search_variants(base_query: str, language: str = "C#") -> list[SearchVariant]:
    """
    Build the ordered variant list for a base query.

    Variants whose query text repeats an earlier one are dropped, so a base
    query that already carries a qualifier does not produce duplicate passes.
    """
    base = " ".join(base_query.split())
    no_language = _without(base, "language:")
    no_in_file = _with_language(_without(base, "in:file"), language)

    candidates = [
        SearchVariant("all", base),
        SearchVariant("with-extension", _join(base, "extension:cs")),
        SearchVariant("fork-false", _join(base, "fork:false")),
        SearchVariant("fork-true", _join(base, "fork:true")),
        SearchVariant("fork-false-extension", _join(base, "extension:cs fork:false")),
        SearchVariant("fork-true-extension", _join(base, "extension:cs fork:true")),
    ]
    candidates += [SearchVariant(name, _join(base, size)) for name, size in SIZE_BUCKETS]
    candidates += [
        SearchVariant("no-language", no_language),
        SearchVariant("no-language-extension", _join(no_language, "extension:cs")),
        SearchVariant("sort-indexed", _join(base, "sort:indexed")),
        SearchVariant("sort-indexed-desc", _join(base, "sort:indexed order:desc")),
        SearchVariant("sort-indexed-asc", _join(base, "sort:indexed order:asc")),
        SearchVariant("csharp-only", no_in_file),
        SearchVariant("csharp-extension", _join(no_in_file, "extension:cs")),
        SearchVariant("csharp-fork-true", _join(no_in_file, "fork:true")),
        SearchVariant("csharp-fork-false", _join(no_in_file, "fork:false")),
    ]
    for fork in ("true", "false"):
        candidates += [
            SearchVariant(f"fork-{fork}-{name}", _join(base, f"fork:{fork}", size))
            for name, size in FORK_SIZE_BUCKETS
        ]

    variants: list[SearchVariant] = []
    seen_queries: set[str] = set()
    for variant in candidates:
        if variant.query in seen_queries:
            continue
        seen_queries.add(variant.query)
        variants.append(variant)
    return variants
