"""
SQLAlchemy models for tagctx.

Defines the canonical tag table, the tagging join table and the `Taggable`
mixin that host models inherit to take part in tagging.

A tagging links one tag to one record of any taggable type under one context.
The link to the record is a generic association: ``taggable_type`` holds the
name of the record's base mapped class and ``taggable_id`` its primary key,
so there is no database foreign key on the record side. Deleting a record
through the ORM deletes its taggings; deleting a tag cascades in the database.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, String, UniqueConstraint,
    and_, event, select
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, declared_attr, foreign, mapped_column,
    relationship, remote
)
from sqlalchemy.orm.attributes import flag_dirty

from tagctx.contexts import registry, type_name
from tagctx.errors import ValidationFailure
from tagctx.normalizer import clean_tags, parse_tags


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models, tag tables and taggable records alike."""
    pass


class Tag(Base):
    """
    Canonical tag, unique by name.

    Names are case-sensitive and stored trimmed. Tags are created on first
    use and never renamed.
    """
    __tablename__ = 'tags'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    taggings: Mapped[List["Tagging"]] = relationship(
        "Tagging",
        back_populates="tag",
        passive_deletes=True,
        lazy="dynamic"  # Can be large for popular tags
    )

    @classmethod
    def by_taggable_type(cls, taggable_type: Union[str, type]):
        """
        Statement selecting the distinct tags used by records of a taggable type.

        Args:
            taggable_type: Taggable class or its stored type name
        """
        if isinstance(taggable_type, type):
            taggable_type = type_name(taggable_type)
        return (
            select(cls)
            .join(Tagging, Tagging.tag_id == cls.id)
            .where(Tagging.taggable_type == taggable_type)
            .distinct()
        )

    def __repr__(self):
        return f"<Tag(id={self.id}, name='{self.name}')>"


class Tagging(Base):
    """
    Join row linking a tag to a taggable record under a context.

    The optional tagger is another generic association (type name + id),
    left empty by save-time reconciliation.
    """
    __tablename__ = 'taggings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('tags.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    taggable_type: Mapped[str] = mapped_column(String(128), nullable=False)
    taggable_id: Mapped[int] = mapped_column(Integer, nullable=False)
    context: Mapped[str] = mapped_column(String(128), nullable=False)

    tagger_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tagger_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    tag: Mapped["Tag"] = relationship("Tag", back_populates="taggings", lazy="joined")

    __table_args__ = (
        Index('ix_taggings_taggable_context', 'taggable_type', 'taggable_id', 'context'),
        Index('ix_taggings_tag_context', 'tag_id', 'context'),
        UniqueConstraint(
            'tag_id', 'taggable_type', 'taggable_id', 'context',
            name='uq_taggings_tag_taggable_context'
        ),
    )

    def __repr__(self):
        return (
            f"<Tagging(id={self.id}, tag_id={self.tag_id}, "
            f"taggable={self.taggable_type}:{self.taggable_id}, context='{self.context}')>"
        )


# =============================================================================
# Taggable records
# =============================================================================

@dataclass
class TagCache:
    """
    Per-record tag state owned by one loaded instance.

    Attributes:
        contexts: Context name to ordered unique tag names
        dirty: Contexts written since the last save
        loaded: Whether contexts has been filled from the record's taggings
        errors: Validation errors from the last `Taggable.validate_tags` call
    """
    contexts: Dict[str, Any] = field(default_factory=dict)
    dirty: Set[str] = field(default_factory=set)
    loaded: bool = False
    errors: Dict[str, str] = field(default_factory=dict)


class TagContext:
    """
    Declares a tag context on a taggable class.

    Reading the attribute returns the context's tag names; assigning a string
    or list replaces them and marks the context dirty:

        user.skills = 'python, "data modelling"'
        user.skills   # ['python', 'data modelling']
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name

    def __set_name__(self, owner, attr_name):
        if self.name is None:
            self.name = attr_name
        registry.declare(owner, [self.name])

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.get_tags(self.name)

    def __set__(self, instance, value):
        instance.set_tags(self.name, value)

    def __repr__(self):
        return f"<TagContext('{self.name}')>"


class Taggable:
    """
    Mixin for models whose records carry tags.

    The host model must have an integer ``id`` primary key. Tag names are
    read from and written to an in-memory `TagCache`; dirty contexts are
    written to the taggings table when the session flushes (see
    `tagctx.reconciler`). Expiring or refreshing the instance discards the
    cache, so the next read reflects what is stored.
    """

    @declared_attr
    def taggings(cls) -> Mapped[List["Tagging"]]:
        name = type_name(cls)
        return relationship(
            Tagging,
            primaryjoin=lambda: and_(
                cls.id == foreign(remote(Tagging.taggable_id)),
                Tagging.taggable_type == name,
            ),
            order_by=lambda: Tagging.id,
            # No delete-orphan: every taggable class is a possible parent of a
            # tagging, so the reconciler deletes stale taggings explicitly
            cascade="all",
            # Every taggable class writes taggings.taggable_id
            overlaps="taggings",
            lazy="selectin",
        )

    @classmethod
    def tag_contexts(cls):
        """Contexts declared for this class."""
        return registry.contexts_for(cls)

    @property
    def tag_cache(self) -> TagCache:
        cache = self.__dict__.get('_tag_cache')
        if cache is None:
            cache = TagCache()
            self.__dict__['_tag_cache'] = cache
        return cache

    def discard_tag_cache(self) -> None:
        """Drop cached tag names and any unsaved tag writes."""
        self.__dict__.pop('_tag_cache', None)

    def _cached_tags(self) -> TagCache:
        cache = self.tag_cache
        if not cache.loaded:
            by_context: Dict[str, List[str]] = defaultdict(list)
            for tagging in self.taggings:
                if tagging.tag is not None:
                    by_context[tagging.context].append(tagging.tag.name)
            for context, names in by_context.items():
                if context not in cache.dirty:
                    cache.contexts[context] = clean_tags(names)
            cache.loaded = True
        return cache

    def get_tags(self, context: str) -> List[str]:
        """
        Get the tag names of a context.

        Raises:
            InvalidContext: If context is not declared for this class
        """
        registry.validate(type(self), [context])
        value = self._cached_tags().contexts.get(context)
        if value is None:
            return []
        return list(value)

    def set_tags(self, context: str, value: Any) -> None:
        """
        Replace the tag names of a context.

        Args:
            context: Declared context name
            value: Comma separated string or list of names

        Raises:
            InvalidContext: If context is not declared for this class
            MalformedTagInput: If value is neither a string nor a list
        """
        registry.validate(type(self), [context])
        names = clean_tags(parse_tags(value))
        cache = self._cached_tags()
        cache.contexts[context] = names
        cache.dirty.add(context)
        # Lets a flush run even when no mapped column changed
        flag_dirty(self)

    def add_tags(self, context: str, value: Any) -> None:
        """Append tag names to a context, keeping the existing ones."""
        self.set_tags(context, self.get_tags(context) + parse_tags(value))

    def remove_tags(self, context: str, value: Any) -> None:
        """Remove tag names from a context."""
        removed = set(clean_tags(parse_tags(value)))
        self.set_tags(context, [name for name in self.get_tags(context) if name not in removed])

    @property
    def dirty_contexts(self) -> frozenset:
        return frozenset(self.tag_cache.dirty)

    def mark_tags_clean(self, contexts: Optional[Iterable[str]] = None) -> None:
        """Forget dirty flags, for all contexts or the given ones."""
        cache = self.tag_cache
        if contexts is None:
            cache.dirty.clear()
        else:
            cache.dirty.difference_update(contexts)

    @property
    def tag_errors(self) -> Dict[str, str]:
        return dict(self.tag_cache.errors)

    def validate_tags(self, raise_on_error: bool = False) -> bool:
        """
        Check that every cached context holds a collection of tag names.

        Errors are stored on the cache and exposed through `tag_errors`.

        Args:
            raise_on_error: Raise ValidationFailure instead of returning False

        Returns:
            True if all contexts are valid
        """
        cache = self.tag_cache
        errors = {}
        for context, value in cache.contexts.items():
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
                errors[context] = "is invalid"
            elif not all(isinstance(name, str) for name in value):
                errors[context] = "contains non-string tag names"
        cache.errors = errors

        if errors and raise_on_error:
            raise ValidationFailure(errors, record=self)
        return not errors

    def taggings_for_context(self, context: str) -> List["Tagging"]:
        registry.validate(type(self), [context])
        return [t for t in self.taggings if t.context == context]

    def context_tags(self, context: str) -> List["Tag"]:
        """Stored Tag rows linked under a context."""
        return [t.tag for t in self.taggings_for_context(context) if t.tag is not None]

    @property
    def tags(self) -> List["Tag"]:
        """Distinct stored Tag rows across all contexts."""
        seen = set()
        result = []
        for tagging in self.taggings:
            tag = tagging.tag
            if tag is not None and tag.id not in seen:
                seen.add(tag.id)
                result.append(tag)
        return result

    @property
    def tags_count(self) -> int:
        """Match count set on records returned by a ranked tag query."""
        return int(self.__dict__.get('_tags_count') or 0)

    @tags_count.setter
    def tags_count(self, value) -> None:
        self.__dict__['_tags_count'] = int(value or 0)


@event.listens_for(Taggable, "expire", propagate=True)
def _discard_cache_on_expire(target, attrs):
    """Reloading a record from the database also reloads its tags."""
    if attrs is None or 'taggings' in attrs:
        target.discard_tag_cache()
