"""Transfer-Encoding mutations and raw request builders."""

from .mutations import (
    Mutation,
    MutationCategory,
    MUTATIONS,
    generate_mutations,
    get_mutation,
    glob_match,
    filter_mutations,
    get_categories_summary,
)
from .builder import (
    build_baseline,
    build_clte,
    build_clte_verify,
    build_tecl,
    build_tecl_verify,
    build_single_test,
    parse_desync_type,
    PROBE_BUILDERS,
)

__all__ = [
    # Mutations
    "Mutation",
    "MutationCategory",
    "MUTATIONS",
    "generate_mutations",
    "get_mutation",
    "glob_match",
    "filter_mutations",
    "get_categories_summary",
    # Requests
    "build_baseline",
    "build_clte",
    "build_clte_verify",
    "build_tecl",
    "build_tecl_verify",
    "build_single_test",
    "parse_desync_type",
    "PROBE_BUILDERS",
]
