from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Union

from .structure import ROLE_ANCHOR, ROLE_TARGET, BookStructure, Paragraph, Verse
from .tokens import Token

__all__ = [
    "DEFAULT_ELLIPSIS",
    "AlignmentIndex",
    "Projection",
    "anchor_ids_for_token",
    "build_phrase",
    "project",
    "project_from_token",
]

DEFAULT_ELLIPSIS = "..."

TargetStream = Union[BookStructure, "AlignmentIndex", Iterable[Token], Iterable[Verse], Iterable[Paragraph]]


@dataclass(frozen=True)
class Projection:
    tokens: tuple[Token, ...] = ()
    phrase: str = ""

    @property
    def token_ids(self) -> tuple[int, ...]:
        return tuple(token.id for token in self.tokens)

    @property
    def is_empty(self) -> bool:
        return not self.tokens


def _flatten(items: Iterable[object]) -> list[Token]:
    tokens: list[Token] = []
    for item in items:
        if isinstance(item, Token):
            tokens.append(item)
        elif isinstance(item, (Verse, Paragraph)):
            tokens.extend(item.tokens)
        else:
            raise TypeError(f"Unsupported item in target stream: {type(item).__name__}")
    return tokens


class AlignmentIndex:
    """
    Reverse index from anchor id to the target tokens aligned to it.

    Build one per resource and reuse it across projections; it holds no
    state beyond the tokens it was built from.
    """

    def __init__(self, tokens: Iterable[Token], *, role: str = ROLE_TARGET) -> None:
        self.role = role
        self.tokens: tuple[Token, ...] = tuple(tokens)
        self._positions: dict[int, int] = {}
        self._by_anchor: dict[int, list[Token]] = {}
        for position, token in enumerate(self.tokens):
            self._positions.setdefault(token.id, position)
            if role == ROLE_ANCHOR:
                self._by_anchor.setdefault(token.id, []).append(token)
            elif token.alignment is not None:
                for anchor_id in token.alignment.anchor_ids:
                    bucket = self._by_anchor.setdefault(anchor_id, [])
                    if not bucket or bucket[-1].id != token.id:
                        bucket.append(token)

    @classmethod
    def from_structure(cls, book: BookStructure) -> "AlignmentIndex":
        return cls(book.token_stream(), role=book.role)

    def __len__(self) -> int:
        return len(self.tokens)

    def position(self, token_id: int) -> int | None:
        return self._positions.get(token_id)

    def tokens_for(self, anchor_ids: Iterable[int]) -> list[Token]:
        found: dict[int, Token] = {}
        for anchor_id in anchor_ids:
            for token in self._by_anchor.get(anchor_id, ()):
                found.setdefault(token.id, token)
        return list(found.values())


def _as_index(target_stream: TargetStream | None, role: str | None = None) -> AlignmentIndex:
    if target_stream is None:
        raise TypeError("target_stream is required.")
    if isinstance(target_stream, AlignmentIndex):
        return target_stream
    if isinstance(target_stream, BookStructure):
        return AlignmentIndex.from_structure(target_stream)
    if isinstance(target_stream, (str, bytes)):
        raise TypeError("target_stream must hold tokens, not text.")
    return AlignmentIndex(_flatten(target_stream), role=role or ROLE_TARGET)


def build_phrase(
    tokens: Sequence[Token],
    stream: AlignmentIndex | Iterable[Token],
    *,
    ellipsis: str = DEFAULT_ELLIPSIS,
) -> str:
    """
    Join matched tokens into a readable phrase.

    Neighbours are joined with a space. A gap made only of punctuation keeps
    that punctuation; any other gap becomes the ellipsis marker.
    """
    if not tokens:
        return ""
    index = stream if isinstance(stream, AlignmentIndex) else AlignmentIndex(stream)

    def order(token: Token) -> tuple[int, int]:
        position = index.position(token.id)
        return (0, position) if position is not None else (1, token.id)

    ordered = sorted(tokens, key=order)
    parts = [ordered[0].text.strip()]
    for left, right in zip(ordered, ordered[1:]):
        left_pos = index.position(left.id)
        right_pos = index.position(right.id)
        if left_pos is not None and right_pos is not None:
            between = index.tokens[left_pos + 1 : right_pos]
        elif right.id - left.id == 1:
            between = ()
        else:
            between = None
        if between is not None and not between:
            parts.append(" ")
        elif between and all(token.is_punctuation for token in between):
            parts.append("".join(token.text.strip() for token in between))
            parts.append(" ")
        else:
            parts.append(f" {ellipsis} ")
        parts.append(right.text.strip())
    return "".join(parts)


def project(
    anchor_ids: Iterable[int],
    target_stream: TargetStream | None,
    *,
    role: str | None = None,
    ellipsis: str = DEFAULT_ELLIPSIS,
) -> Projection:
    """
    Find the tokens of a target resource aligned to `anchor_ids`.

    An anchor-role stream matches tokens by their own id, which is how the
    clicked resource highlights itself. A `BookStructure` or `AlignmentIndex`
    carries its role; plain token, verse or paragraph lists take `role`
    (default target). No match gives an empty Projection.
    """
    if role is not None and role not in (ROLE_ANCHOR, ROLE_TARGET):
        raise ValueError(f"Unknown stream role: {role!r}")
    index = _as_index(target_stream, role)
    if isinstance(anchor_ids, (str, bytes)):
        raise TypeError("anchor_ids must be an iterable of integers.")
    wanted = frozenset(anchor_ids)
    if not wanted:
        return Projection()
    matched = index.tokens_for(wanted)
    if not matched:
        return Projection()
    ordered = sorted(matched, key=lambda token: (index.position(token.id) or 0, token.id))
    return Projection(tokens=tuple(ordered), phrase=build_phrase(ordered, index, ellipsis=ellipsis))


def anchor_ids_for_token(token: Token, *, role: str | None = None) -> frozenset[int]:
    """
    Anchor ids a clicked token stands for.

    Aligned target tokens give their link ids, anchor tokens their own id.
    An unaligned target token stands for nothing.
    """
    if not isinstance(token, Token):
        raise TypeError("anchor_ids_for_token expects a Token.")
    if token.alignment is not None:
        return frozenset(token.alignment.anchor_ids)
    if role == ROLE_TARGET:
        return frozenset()
    return frozenset({token.id})


def project_from_token(
    token: Token,
    streams: Mapping[str, TargetStream],
    *,
    role: str | None = None,
    stream_roles: Mapping[str, str] | None = None,
    ellipsis: str = DEFAULT_ELLIPSIS,
) -> dict[str, Projection]:
    """
    Project one clicked token onto every stream, its own resource included.

    `role` is the clicked token's role; `stream_roles` names the role of any
    stream passed as a plain list.
    """
    anchor_ids = anchor_ids_for_token(token, role=role)
    roles = stream_roles or {}
    return {
        name: project(anchor_ids, stream, role=roles.get(name), ellipsis=ellipsis)
        for name, stream in streams.items()
    }
