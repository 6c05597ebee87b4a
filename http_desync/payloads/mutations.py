"""Transfer-Encoding header mutations for http-desync.

Each mutation is a spelling of the Transfer-Encoding header line that one
HTTP parser may honour while another ignores it. A mutation's header text is
inserted verbatim as a request header line, so duplicate-header variants carry
their own CRLF between the two lines.
"""

from enum import Enum
from fnmatch import fnmatchcase
from typing import List, Dict, Iterable, Optional
from dataclasses import dataclass


class MutationCategory(Enum):
    """Categories of Transfer-Encoding mutation."""
    CAPITALIZATION = "capitalization"
    LINE_WHITESPACE = "line_whitespace"
    COLON = "colon"
    HEADER_NAME = "header_name"
    VALUE = "value"
    DUPLICATE = "duplicate"
    MULTI_VALUE = "multi_value"


@dataclass(frozen=True)
class Mutation:
    """A single named Transfer-Encoding mutation."""
    name: str
    header: str
    category: MutationCategory
    description: str

    def __str__(self) -> str:
        return self.header


# ============================================================================
# Catalog
# ============================================================================

MUTATIONS: List[Mutation] = [
    # -------------------------------------------------------------------------
    # Capitalization
    # -------------------------------------------------------------------------
    Mutation(
        name="standard",
        header="Transfer-Encoding: chunked",
        category=MutationCategory.CAPITALIZATION,
        description="Unmodified header",
    ),
    Mutation(
        name="lowercase-name",
        header="transfer-encoding: chunked",
        category=MutationCategory.CAPITALIZATION,
        description="All lowercase header name",
    ),
    Mutation(
        name="uppercase-name",
        header="TRANSFER-ENCODING: chunked",
        category=MutationCategory.CAPITALIZATION,
        description="All uppercase header name",
    ),
    Mutation(
        name="mixedcase-name",
        header="tRaNsFeR-eNcOdInG: chunked",
        category=MutationCategory.CAPITALIZATION,
        description="Alternating case header name",
    ),
    Mutation(
        name="uppercase-value",
        header="Transfer-Encoding: CHUNKED",
        category=MutationCategory.CAPITALIZATION,
        description="Uppercase value",
    ),
    Mutation(
        name="mixedcase-value",
        header="Transfer-Encoding: cHuNkEd",
        category=MutationCategory.CAPITALIZATION,
        description="Alternating case value",
    ),

    # -------------------------------------------------------------------------
    # Whitespace around the whole line
    # -------------------------------------------------------------------------
    Mutation(
        name="lineprefix-space",
        header=" Transfer-Encoding: chunked",
        category=MutationCategory.LINE_WHITESPACE,
        description="Leading space (obsolete line folding)",
    ),
    Mutation(
        name="lineprefix-tab",
        header="\tTransfer-Encoding: chunked",
        category=MutationCategory.LINE_WHITESPACE,
        description="Leading tab (obsolete line folding)",
    ),
    Mutation(
        name="line-appendix-space",
        header="Transfer-Encoding: chunked ",
        category=MutationCategory.LINE_WHITESPACE,
        description="Trailing space after value",
    ),
    Mutation(
        name="line-appendix-tab",
        header="Transfer-Encoding: chunked\t",
        category=MutationCategory.LINE_WHITESPACE,
        description="Trailing tab after value",
    ),
    Mutation(
        name="line-appendix-vtab",
        header="Transfer-Encoding: chunked\x0b",
        category=MutationCategory.LINE_WHITESPACE,
        description="Trailing vertical tab after value",
    ),
    Mutation(
        name="line-appendix-cr",
        header="Transfer-Encoding: chunked\r",
        category=MutationCategory.LINE_WHITESPACE,
        description="Bare CR before the line ending",
    ),
    Mutation(
        name="line-appendix-nl",
        header="Transfer-Encoding: chunked\n",
        category=MutationCategory.LINE_WHITESPACE,
        description="Bare LF before the line ending",
    ),
    Mutation(
        name="suffix-ff",
        header="Transfer-Encoding: chunked\x0c",
        category=MutationCategory.LINE_WHITESPACE,
        description="Trailing form feed after value",
    ),
    Mutation(
        name="suffix-null",
        header="Transfer-Encoding: chunked\x00",
        category=MutationCategory.LINE_WHITESPACE,
        description="Trailing null byte after value",
    ),

    # -------------------------------------------------------------------------
    # Around the colon
    # -------------------------------------------------------------------------
    Mutation(
        name="colon-prefix-space",
        header="Transfer-Encoding : chunked",
        category=MutationCategory.COLON,
        description="Space before colon",
    ),
    Mutation(
        name="colon-prefix-tab",
        header="Transfer-Encoding\t: chunked",
        category=MutationCategory.COLON,
        description="Tab before colon",
    ),
    Mutation(
        name="colon-prefix-cr",
        header="Transfer-Encoding\r: chunked",
        category=MutationCategory.COLON,
        description="Bare CR before colon",
    ),
    Mutation(
        name="colon-nospace",
        header="Transfer-Encoding:chunked",
        category=MutationCategory.COLON,
        description="No whitespace after colon",
    ),
    Mutation(
        name="colon-tab",
        header="Transfer-Encoding:\tchunked",
        category=MutationCategory.COLON,
        description="Tab after colon",
    ),
    Mutation(
        name="colon-vtab",
        header="Transfer-Encoding:\x0bchunked",
        category=MutationCategory.COLON,
        description="Vertical tab after colon",
    ),
    Mutation(
        name="colon-ff",
        header="Transfer-Encoding:\x0cchunked",
        category=MutationCategory.COLON,
        description="Form feed after colon",
    ),
    Mutation(
        name="colon-double-space",
        header="Transfer-Encoding:  chunked",
        category=MutationCategory.COLON,
        description="Two spaces after colon",
    ),
    Mutation(
        name="folded-crlf",
        header="Transfer-Encoding:\r\n chunked",
        category=MutationCategory.COLON,
        description="Value folded onto a continuation line",
    ),
    Mutation(
        name="folded-lf",
        header="Transfer-Encoding:\n chunked",
        category=MutationCategory.COLON,
        description="Value folded with a bare LF",
    ),

    # -------------------------------------------------------------------------
    # Header name
    # -------------------------------------------------------------------------
    Mutation(
        name="name-underscore",
        header="Transfer_Encoding: chunked",
        category=MutationCategory.HEADER_NAME,
        description="Underscore instead of hyphen",
    ),
    Mutation(
        name="name-space",
        header="Transfer Encoding: chunked",
        category=MutationCategory.HEADER_NAME,
        description="Space instead of hyphen",
    ),
    Mutation(
        name="name-nohyphen",
        header="TransferEncoding: chunked",
        category=MutationCategory.HEADER_NAME,
        description="Hyphen removed",
    ),
    Mutation(
        name="name-null",
        header="Transfer-Encoding\x00: chunked",
        category=MutationCategory.HEADER_NAME,
        description="Null byte after header name",
    ),
    Mutation(
        name="content-encoding",
        header="Content-Encoding: chunked",
        category=MutationCategory.HEADER_NAME,
        description="Chunked declared as a content coding",
    ),

    # -------------------------------------------------------------------------
    # Value
    # -------------------------------------------------------------------------
    Mutation(
        name="value-quoted",
        header='Transfer-Encoding: "chunked"',
        category=MutationCategory.VALUE,
        description="Double-quoted value",
    ),
    Mutation(
        name="value-single-quoted",
        header="Transfer-Encoding: 'chunked'",
        category=MutationCategory.VALUE,
        description="Single-quoted value",
    ),
    Mutation(
        name="value-xprefix",
        header="Transfer-Encoding: xchunked",
        category=MutationCategory.VALUE,
        description="Junk prefix on value",
    ),
    Mutation(
        name="value-xsuffix",
        header="Transfer-Encoding: chunkedx",
        category=MutationCategory.VALUE,
        description="Junk suffix on value",
    ),
    Mutation(
        name="value-param",
        header="Transfer-Encoding: chunked; q=0.5",
        category=MutationCategory.VALUE,
        description="Parameter attached to value",
    ),
    Mutation(
        name="value-urlencoded",
        header="Transfer-Encoding: chunk%65d",
        category=MutationCategory.VALUE,
        description="Percent-encoded character in value",
    ),

    # -------------------------------------------------------------------------
    # Duplicate headers
    # -------------------------------------------------------------------------
    Mutation(
        name="double-chunked",
        header="Transfer-Encoding: chunked\r\nTransfer-Encoding: chunked",
        category=MutationCategory.DUPLICATE,
        description="Header sent twice",
    ),
    Mutation(
        name="double-chunked-identity",
        header="Transfer-Encoding: chunked\r\nTransfer-Encoding: identity",
        category=MutationCategory.DUPLICATE,
        description="Chunked then identity",
    ),
    Mutation(
        name="double-identity-chunked",
        header="Transfer-Encoding: identity\r\nTransfer-Encoding: chunked",
        category=MutationCategory.DUPLICATE,
        description="Identity then chunked",
    ),
    Mutation(
        name="double-chunked-x",
        header="Transfer-Encoding: chunked\r\nTransfer-Encoding: x",
        category=MutationCategory.DUPLICATE,
        description="Chunked then an unknown coding",
    ),
    Mutation(
        name="double-x-chunked",
        header="Transfer-Encoding: x\r\nTransfer-Encoding: chunked",
        category=MutationCategory.DUPLICATE,
        description="Unknown coding then chunked",
    ),
    Mutation(
        name="double-empty-chunked",
        header="Transfer-Encoding:\r\nTransfer-Encoding: chunked",
        category=MutationCategory.DUPLICATE,
        description="Empty header then chunked",
    ),
    Mutation(
        name="double-space-prefixed",
        header="Transfer-Encoding: identity\r\n Transfer-Encoding: chunked",
        category=MutationCategory.DUPLICATE,
        description="Second header space-prefixed (folds into the first)",
    ),

    # -------------------------------------------------------------------------
    # Multiple values in one header
    # -------------------------------------------------------------------------
    Mutation(
        name="multi-comma-identity-chunked",
        header="Transfer-Encoding: identity, chunked",
        category=MutationCategory.MULTI_VALUE,
        description="Identity, chunked",
    ),
    Mutation(
        name="multi-comma-chunked-identity",
        header="Transfer-Encoding: chunked, identity",
        category=MutationCategory.MULTI_VALUE,
        description="Chunked, identity",
    ),
    Mutation(
        name="multi-comma-x-chunked",
        header="Transfer-Encoding: x, chunked",
        category=MutationCategory.MULTI_VALUE,
        description="Unknown coding, chunked",
    ),
    Mutation(
        name="multi-comma-chunked-x",
        header="Transfer-Encoding: chunked, x",
        category=MutationCategory.MULTI_VALUE,
        description="Chunked, unknown coding",
    ),
    Mutation(
        name="multi-space-identity-chunked",
        header="Transfer-Encoding: identity chunked",
        category=MutationCategory.MULTI_VALUE,
        description="Space separated identity chunked",
    ),
    Mutation(
        name="multi-space-chunked-identity",
        header="Transfer-Encoding: chunked identity",
        category=MutationCategory.MULTI_VALUE,
        description="Space separated chunked identity",
    ),
    Mutation(
        name="multi-comma-leading",
        header="Transfer-Encoding: , chunked",
        category=MutationCategory.MULTI_VALUE,
        description="Empty element before chunked",
    ),
    Mutation(
        name="multi-comma-trailing",
        header="Transfer-Encoding: chunked,",
        category=MutationCategory.MULTI_VALUE,
        description="Empty element after chunked",
    ),
]


def generate_mutations() -> Dict[str, str]:
    """Get the full catalog as a name -> header text mapping."""
    return {mutation.name: mutation.header for mutation in MUTATIONS}


def get_mutation(name: str) -> Optional[Mutation]:
    for mutation in MUTATIONS:
        if mutation.name == name:
            return mutation
    return None


def glob_match(patterns: Iterable[str], name: str) -> bool:
    return any(fnmatchcase(name, pattern) for pattern in patterns)


def filter_mutations(
    catalog: Dict[str, str],
    enabled: Optional[List[str]] = None,
    disabled: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Apply include and exclude globs to a mutation catalog.

    Args:
        catalog: name -> header text
        enabled: if non-empty, a name must match at least one of these
        disabled: a name matching any of these is removed, even if enabled

    Returns:
        The selected subset of the catalog
    """
    selected = {}
    for name, header in catalog.items():
        if enabled and not glob_match(enabled, name):
            continue
        if disabled and glob_match(disabled, name):
            continue
        selected[name] = header
    return selected


def get_categories_summary() -> Dict[MutationCategory, int]:
    """Get count of mutations per category."""
    summary = {}
    for category in MutationCategory:
        summary[category] = len([m for m in MUTATIONS if m.category == category])
    return summary
