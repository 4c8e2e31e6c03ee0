"""
Save-time reconciliation of tag caches with the taggings table.

When a session flushes, every taggable record with dirty contexts is passed
to the registered pre-save hooks. The default hook, `TagReconciler`, makes
the stored taggings of each dirty context equal to the cached tag names:

1. Resolve the desired names to Tag rows, creating missing tags.
2. Remove taggings whose tag is no longer wanted.
3. Add taggings for wanted tags that are not linked yet.

Everything happens inside the flush, so the session transaction decides
atomicity: a failed save rolls back to the previous tagging set.

Tag creation runs in a SAVEPOINT. If another writer commits the same new
name first, the unique constraint fires, the savepoint is rolled back and
the existing row is fetched instead.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import event, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tagctx.contexts import registry, type_name
from tagctx.models import Tag, Tagging, Taggable

logger = logging.getLogger(__name__)

PreSaveHook = Callable[[Session, Taggable], None]


class TagResolver:
    """Maps tag names to Tag rows, creating the missing ones race-safely."""

    def resolve(self, session: Session, names: Sequence[str]) -> Dict[str, Tag]:
        """
        Get or create tags by name.

        Args:
            session: Session whose transaction the tags are created in
            names: Tag names (duplicates collapse to one row)

        Returns:
            Mapping of name to Tag
        """
        if not names:
            return {}

        tags = self._fetch(session, names)
        missing = [name for name in dict.fromkeys(names) if name not in tags]
        for name in missing:
            self._create(session, name)

        if missing:
            tags.update(self._fetch(session, missing))

        unresolved = [name for name in names if name not in tags]
        if unresolved:
            raise LookupError(f"Tags could not be created: {unresolved}")
        return tags

    @staticmethod
    def _fetch(session: Session, names: Iterable[str]) -> Dict[str, Tag]:
        result = session.execute(select(Tag).where(Tag.name.in_(list(names))))
        return {tag.name: tag for tag in result.scalars()}

    @staticmethod
    def _create(session: Session, name: str) -> None:
        """Insert a tag row inside a savepoint; a unique-name race is not an error."""
        connection = session.connection()
        try:
            with connection.begin_nested():
                connection.execute(insert(Tag).values(name=name))
            logger.debug("Created tag %r", name)
        except IntegrityError:
            # Another writer created the same name first
            logger.debug("Tag %r already created concurrently, reusing it", name)


class TagReconciler:
    """
    Writes a record's dirty tag contexts to storage.

    Args:
        resolver: Tag lookup/creation strategy
    """

    def __init__(self, resolver: Optional[TagResolver] = None):
        self.resolver = resolver or TagResolver()

    def __call__(self, session: Session, record: Taggable) -> None:
        self.reconcile(session, record)

    def reconcile(self, session: Session, record: Taggable) -> List[str]:
        """
        Reconcile every dirty context of a record.

        Returns:
            The contexts that were written
        """
        dirty = sorted(record.dirty_contexts)
        if not dirty:
            return []

        registry.validate(type(record), dirty)
        cache = record.tag_cache
        for context in dirty:
            self.reconcile_context(session, record, context, cache.contexts.get(context) or [])

        record.mark_tags_clean(dirty)
        return dirty

    def reconcile_context(
        self,
        session: Session,
        record: Taggable,
        context: str,
        names: Sequence[str]
    ) -> None:
        """Make the stored taggings of one context equal to names."""
        names = list(dict.fromkeys(names))
        current = record.taggings_for_context(context)
        tags = self.resolver.resolve(session, names)
        wanted_ids = {tags[name].id for name in names}

        stale = [t for t in current if t.tag_id not in wanted_ids]
        for tagging in stale:
            record.taggings.remove(tagging)
            session.delete(tagging)

        linked_ids = {t.tag_id for t in current if t.tag_id in wanted_ids}
        added = 0
        for name in names:
            tag = tags[name]
            if tag.id in linked_ids:
                continue
            record.taggings.append(Tagging(
                tag=tag,
                taggable_type=type_name(type(record)),
                context=context,
                tagger_type=None,
                tagger_id=None,
            ))
            linked_ids.add(tag.id)
            added += 1

        logger.debug(
            "Reconciled %s context %r: %d kept, %d removed, %d added",
            type_name(type(record)), context, len(current) - len(stale), len(stale), added
        )


# =============================================================================
# Pre-save hooks
# =============================================================================

class PreSaveHooks:
    """
    Ordered callbacks run for each taggable record with dirty tags before a flush.

    Invalid records (see `Taggable.validate_tags`) are not saved: they are
    expunged from the session before the flush, so neither their row nor
    their tags are written. Their dirty flags and `tag_errors` stay set and
    the other pending changes of the flush go through.
    """

    def __init__(self, hooks: Optional[Iterable[PreSaveHook]] = None):
        self.hooks: List[PreSaveHook] = list(hooks) if hooks is not None else [TagReconciler()]

    def append(self, hook: PreSaveHook) -> None:
        self.hooks.append(hook)

    def pending_records(self, session: Session) -> List[Taggable]:
        """Taggable records in the session that have unsaved tag writes."""
        candidates = list(session.new) + list(session.identity_map.values())
        pending = []
        seen = set()
        for obj in candidates:
            if id(obj) in seen or obj in session.deleted:
                continue
            seen.add(id(obj))
            if isinstance(obj, Taggable) and obj.dirty_contexts:
                pending.append(obj)
        return pending

    def run(self, session: Session) -> int:
        """
        Invoke the hooks for every pending record.

        Returns:
            Number of records processed
        """
        processed = 0
        for record in self.pending_records(session):
            if not record.validate_tags():
                logger.warning(
                    "Not saving %r, invalid tag contexts: %s", record, record.tag_errors
                )
                session.expunge(record)
                continue
            for hook in self.hooks:
                hook(session, record)
            processed += 1
        return processed

    def before_flush(self, session: Session, flush_context: Any, instances: Any) -> None:
        self.run(session)

    def install(self, target: Any) -> None:
        """
        Attach to a Session, sessionmaker or Session class.

        Args:
            target: Anything accepted by SQLAlchemy's before_flush event
        """
        if not event.contains(target, "before_flush", self.before_flush):
            event.listen(target, "before_flush", self.before_flush)

    def uninstall(self, target: Any) -> None:
        if event.contains(target, "before_flush", self.before_flush):
            event.remove(target, "before_flush", self.before_flush)
