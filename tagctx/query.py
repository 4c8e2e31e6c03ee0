"""
Ranked tag queries over taggable records.

Two entry points build SQLAlchemy statements:

    # records tagged red or green in the colors context
    stmt = tagged_with(User, ["red", "green"], on="colors")

    # records sharing tags with alice, by context
    stmt = similar_to(alice, on=["skills", "colors"])

    for user, tags_count in session.execute(stmt):
        ...

Statements yield ``(record, tags_count)`` rows, best match first. The match
count is computed in an inner grouped subquery over the taggings table; the
outer query joins it back to the records so ``min_count`` and ``match_all``
can filter on the aggregate.

Tag criteria are first turned into a predicate object and only then into
SQL. A flat list becomes a `MembershipPredicate` (name in list, optionally
restricted to contexts); a mapping becomes a `ContextMembershipPredicate`,
matching any ``(context, name)`` pair of the mapping. The mapping form is an
OR across contexts, not an AND: ``{"colors": ["red"], "skills": ["go"]}``
matches a record that is only red.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import and_, false, func, or_, select, true
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from tagctx.contexts import registry, type_name
from tagctx.models import Tag, Tagging, Taggable
from tagctx.normalizer import normalize_tags_list

logger = logging.getLogger(__name__)


# =============================================================================
# Predicates
# =============================================================================

@dataclass(frozen=True)
class MembershipPredicate:
    """
    Tag name is one of names, in one of contexts.

    An empty operand is left out of the clause rather than rendered as an
    empty IN list.
    """
    names: Tuple[str, ...]
    contexts: Tuple[str, ...] = ()

    @property
    def expected_count(self) -> int:
        return len(self.names)

    def to_sql(self):
        clauses = []
        if self.names:
            clauses.append(Tag.name.in_(self.names))
        if self.contexts:
            clauses.append(Tagging.context.in_(self.contexts))
        if not clauses:
            return true()
        return and_(*clauses)


@dataclass(frozen=True)
class ContextMembershipPredicate:
    """
    Any of the ``(context, names)`` pairs matches.

    Pairs with no names contribute nothing; with no usable pair at all the
    predicate matches no tagging.
    """
    pairs: Tuple[Tuple[str, Tuple[str, ...]], ...]

    @property
    def expected_count(self) -> int:
        return sum(len(names) for _, names in self.pairs)

    def to_sql(self):
        nodes = [
            and_(Tag.name.in_(names), Tagging.context == context)
            for context, names in self.pairs
            if names
        ]
        if not nodes:
            return false()
        return or_(*nodes)


TagPredicate = Union[MembershipPredicate, ContextMembershipPredicate]


def _unique(names: Sequence[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(names))


def build_predicate(model: type, tags: Any, on: Optional[Any] = None) -> TagPredicate:
    """
    Turn tag criteria into a predicate.

    Args:
        model: Taggable class the criteria apply to
        tags: Mapping of context to names, a list of names or a single name
        on: Context or contexts restricting a flat list (ignored for mappings)

    Raises:
        InvalidContext: If a context is not declared for model
        MalformedTagInput: If tags or a mapping value is not a string or list
    """
    if isinstance(tags, Mapping):
        registry.validate(model, tags.keys())
        pairs = tuple(
            (context, _unique(normalize_tags_list(names)))
            for context, names in tags.items()
        )
        return ContextMembershipPredicate(pairs)

    names = _unique(normalize_tags_list(tags))
    contexts = registry.normalize_contexts(model, on)
    return MembershipPredicate(names, tuple(contexts))


def scope_ids(model: type, scope: Select) -> Select:
    """Reduce a ``select(model)`` statement to a subquery of its ids."""
    return scope.with_only_columns(model.id).order_by(None)


# =============================================================================
# Queries
# =============================================================================

def tagged_with(
    model: type,
    tags: Any,
    on: Optional[Any] = None,
    min_count: Optional[int] = None,
    match_all: bool = False,
    scope: Optional[Select] = None
) -> Select:
    """
    Build a ranked query for records carrying the given tags.

    Args:
        model: Taggable class to query
        tags: ``{context: [names]}`` mapping, list of names or single name
        on: Context(s) a flat list is restricted to
        min_count: Drop records matching fewer than this many taggings
        match_all: Keep only records whose match count equals the number of
            queried names (pairs, for a mapping)
        scope: ``select(model)`` statement whose filters the result must honor

    Returns:
        Statement yielding ``(record, tags_count)`` rows ordered by
        tags_count descending, then id

    Raises:
        InvalidContext: If a context is not declared for model
    """
    predicate = build_predicate(model, tags, on)

    inner = (
        select(
            Tagging.taggable_id.label("taggable_id"),
            func.count(Tag.id).label("tags_count"),
        )
        .join(Tag, Tag.id == Tagging.tag_id)
        .where(Tagging.taggable_type == type_name(model))
        .where(predicate.to_sql())
        .group_by(Tagging.taggable_id)
    )
    if scope is not None:
        inner = inner.where(Tagging.taggable_id.in_(scope_ids(model, scope)))

    ranked = inner.subquery("ranked")
    stmt = (
        select(model, ranked.c.tags_count)
        .join(ranked, ranked.c.taggable_id == model.id)
        .order_by(ranked.c.tags_count.desc(), model.id)
    )

    if min_count is not None:
        stmt = stmt.where(ranked.c.tags_count >= min_count)

    if match_all:
        stmt = stmt.where(ranked.c.tags_count == predicate.expected_count)

    return stmt


def similar_to(
    record: Taggable,
    on: Optional[Any] = None,
    min_count: Optional[int] = None,
    scope: Optional[Select] = None
) -> Select:
    """
    Build a ranked query for records sharing tags with record.

    Uses the record's current (possibly unsaved) tag names for each context
    and matches them context by context. The record itself is excluded.

    Args:
        record: Record to compare against
        on: Context(s) to compare; all declared contexts when omitted
        min_count: Minimum number of shared taggings
        scope: ``select(model)`` statement restricting the candidates
    """
    model = type(record)
    contexts = registry.normalize_contexts(model, on, default=registry.contexts_for(model))
    criteria = {context: record.get_tags(context) for context in contexts}

    stmt = tagged_with(model, criteria, min_count=min_count, scope=scope)
    return stmt.where(model.id != record.id)


def fetch_ranked(session: Session, stmt: Select) -> List[Taggable]:
    """
    Execute a ranked statement and return its records.

    Each record gets its match count in ``tags_count``.
    """
    records = []
    for record, tags_count in session.execute(stmt).unique():
        record.tags_count = tags_count
        records.append(record)
    logger.debug("Ranked query returned %d records", len(records))
    return records
