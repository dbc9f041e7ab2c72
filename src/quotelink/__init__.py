from .nodes import BookSource, deserialize_book
from .projection import AlignmentIndex, Projection, anchor_ids_for_token, project, project_from_token
from .quotes import QuoteMatch, ResolvedQuote, parse_quote, resolve_quote
from .references import ReferenceRange, parse_reference
from .sections import DefaultSectionTable
from .structure import (
    BookStructure,
    Paragraph,
    StructuralError,
    TranslatorSection,
    Verse,
    build_book,
)
from .tokens import AlignmentLink, Token

__all__ = [
    "AlignmentIndex",
    "AlignmentLink",
    "BookSource",
    "BookStructure",
    "DefaultSectionTable",
    "Paragraph",
    "Projection",
    "QuoteMatch",
    "ReferenceRange",
    "ResolvedQuote",
    "StructuralError",
    "Token",
    "TranslatorSection",
    "Verse",
    "anchor_ids_for_token",
    "build_book",
    "deserialize_book",
    "parse_quote",
    "parse_reference",
    "project",
    "project_from_token",
    "resolve_quote",
]
