"""
Per-type registry of tag contexts.

Each taggable class declares the contexts its tags are grouped into
(e.g. ``skills``, ``colors``). Declarations are made once, when the class is
defined, and are read-only afterwards:

    class User(Taggable, Base):
        __tablename__ = 'users'
        id: Mapped[int] = mapped_column(primary_key=True)

        skills = TagContext()
        colors = TagContext()

    registry.contexts_for(User)   # ('skills', 'colors')

Lookups walk the class MRO, so subclasses see the contexts declared on their
taggable parents.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import inspect

from tagctx.errors import InvalidContext

logger = logging.getLogger(__name__)


def type_name(cls: type) -> str:
    """
    Name stored in ``taggings.taggable_type`` for a class.

    Mapped subclasses share the name of their base mapper's class, so records
    of an inheritance hierarchy are tagged under one type. Classes that are
    not (yet) mapped use their own name.
    """
    mapper = inspect(cls, raiseerr=False)
    if mapper is not None:
        return mapper.base_mapper.class_.__name__
    return cls.__name__


class ContextRegistry:
    """
    Process-wide mapping of taggable class to its declared contexts.

    Only `declare` writes to the registry; it takes a lock so that classes
    defined from several threads at import time cannot lose declarations.
    """

    def __init__(self):
        self._contexts: Dict[type, List[str]] = {}
        self._lock = threading.Lock()

    def declare(self, cls: type, contexts: Iterable[str]) -> Tuple[str, ...]:
        """
        Add contexts to a type's declaration (ordered union, idempotent).

        Args:
            cls: Taggable class
            contexts: Context names

        Returns:
            The contexts now declared directly on cls
        """
        with self._lock:
            declared = self._contexts.setdefault(cls, [])
            for context in contexts:
                if not isinstance(context, str) or not context:
                    raise ValueError(f"Tag context must be a non-empty string, got {context!r}")
                if context not in declared:
                    declared.append(context)
                    logger.debug("Declared tag context %r on %s", context, cls.__name__)
            return tuple(declared)

    def contexts_for(self, cls: type) -> Tuple[str, ...]:
        """Get all contexts declared for cls and its bases, in declaration order."""
        result: List[str] = []
        for klass in reversed(cls.__mro__):
            for context in self._contexts.get(klass, ()):
                if context not in result:
                    result.append(context)
        return tuple(result)

    def is_taggable(self, cls: type) -> bool:
        return bool(self.contexts_for(cls))

    def is_valid(self, cls: type, context: Any) -> bool:
        """Check whether context is declared for cls."""
        return context in self.contexts_for(cls)

    def validate(self, cls: type, contexts: Iterable[Any]) -> None:
        """
        Verify every context is declared for cls.

        Raises:
            InvalidContext: Naming the first undeclared context
        """
        declared = self.contexts_for(cls)
        for context in contexts:
            if context not in declared:
                raise InvalidContext(context, cls.__name__)

    def normalize_contexts(
        self,
        cls: type,
        on: Optional[Any],
        default: Sequence[str] = ()
    ) -> List[str]:
        """
        Turn an ``on`` option into a validated list of contexts.

        Args:
            cls: Taggable class
            on: None, a single context name or a sequence of names
            default: Contexts to use when on is None

        Returns:
            List of context names

        Raises:
            InvalidContext: If any context is not declared for cls
        """
        if on is None:
            contexts = list(default)
        elif isinstance(on, (list, tuple, set, frozenset)):
            contexts = list(on)
        else:
            contexts = [on]

        self.validate(cls, contexts)
        return contexts


# Global registry instance
registry = ContextRegistry()


def declare_contexts(cls: type, *contexts: str) -> Tuple[str, ...]:
    """Declare contexts on cls in the global registry."""
    return registry.declare(cls, contexts)
