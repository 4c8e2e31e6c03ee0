"""
Tag listings for sets of taggable records.
"""
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.sql import Select

from tagctx.contexts import registry, type_name
from tagctx.models import Tag, Tagging
from tagctx.query import scope_ids


def _tag_join(stmt: Select, model: type, scope: Optional[Select], on: Optional[Any]) -> Select:
    contexts = registry.normalize_contexts(model, on)
    if scope is None and type_name(model) != model.__name__:
        # Subclass records share the base type name
        scope = select(model)

    stmt = (
        stmt.join(Tagging, Tagging.tag_id == Tag.id)
        .where(Tagging.taggable_type == type_name(model))
    )
    if scope is not None:
        stmt = stmt.where(Tagging.taggable_id.in_(scope_ids(model, scope)))
    if contexts:
        stmt = stmt.where(Tagging.context.in_(contexts))
    return stmt


def tags_for(model: type, scope: Optional[Select] = None, on: Optional[Any] = None) -> Select:
    """
    Distinct tags used by records of model.

    Args:
        model: Taggable class
        scope: ``select(model)`` statement narrowing the records
        on: Context(s) to restrict to

    Returns:
        Statement yielding Tag entities

    Raises:
        InvalidContext: If a context is not declared for model
    """
    return _tag_join(select(Tag), model, scope, on).distinct()


def popular_tags(model: type, scope: Optional[Select] = None, on: Optional[Any] = None) -> Select:
    """Same as `tags_for`; order by usage with `tag_counts`."""
    return tags_for(model, scope=scope, on=on)


def tag_counts(model: type, scope: Optional[Select] = None, on: Optional[Any] = None) -> Select:
    """
    Tags used by records of model with their tagging counts.

    Returns:
        Statement yielding ``(Tag, usage)`` rows, most used first
    """
    usage = func.count(Tagging.id).label("usage")
    stmt = _tag_join(select(Tag, usage), model, scope, on)
    return (
        stmt.group_by(Tag.id, Tag.name, Tag.created_at)
        .order_by(usage.desc(), Tag.name)
    )
