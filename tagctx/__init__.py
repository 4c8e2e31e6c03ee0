"""
tagctx - context-scoped tagging for SQLAlchemy models

Records are annotated with free-text tags grouped into named contexts
(``skills``, ``colors``, ...), queried by tag membership, ranked by how many
tags they match, and compared with each other by shared tags.

Design Principles:
- Canonical tags, unique by name, linked to records through taggings
- Contexts declared once per model class, validated on every use
- Tag writes cached on the record and reconciled when the session flushes
- Queries returned as SQLAlchemy statements that compose with other filters

Example Usage:
    >>> from sqlalchemy.orm import Mapped, mapped_column
    >>> from tagctx import Base, Taggable, TagContext, TagStore
    >>> class User(Taggable, Base):
    ...     __tablename__ = "users"
    ...     id: Mapped[int] = mapped_column(primary_key=True)
    ...     skills = TagContext()
    >>> store = TagStore(path="tags.db")
    >>> store.save(User(skills="python, sql"))
    >>> store.tagged_with(User, ["python"], on="skills")
"""

__version__ = "0.3.0"
__author__ = "tagctx Contributors"

# Errors
from tagctx.errors import (
    TaggingError,
    InvalidContext,
    MalformedTagInput,
    ValidationFailure,
)

# Normalization
from tagctx.normalizer import parse_tags, clean_tags, normalize_tags_list

# Contexts
from tagctx.contexts import ContextRegistry, registry, declare_contexts

# Models
from tagctx.models import Base, Tag, Tagging, Taggable, TagContext, TagCache

# Reconciliation
from tagctx.reconciler import TagReconciler, TagResolver, PreSaveHooks

# Queries
from tagctx.query import (
    MembershipPredicate,
    ContextMembershipPredicate,
    tagged_with,
    similar_to,
    fetch_ranked,
)
from tagctx.aggregate import tags_for, popular_tags, tag_counts

# Configuration
from tagctx.config import TagctxConfig, get_config, init_config, configure_logging

# Storage
from tagctx.store import TagStore, get_store

__all__ = [
    # Errors
    "TaggingError",
    "InvalidContext",
    "MalformedTagInput",
    "ValidationFailure",
    # Normalization
    "parse_tags",
    "clean_tags",
    "normalize_tags_list",
    # Contexts
    "ContextRegistry",
    "registry",
    "declare_contexts",
    # Models
    "Base",
    "Tag",
    "Tagging",
    "Taggable",
    "TagContext",
    "TagCache",
    # Reconciliation
    "TagReconciler",
    "TagResolver",
    "PreSaveHooks",
    # Queries
    "MembershipPredicate",
    "ContextMembershipPredicate",
    "tagged_with",
    "similar_to",
    "fetch_ranked",
    "tags_for",
    "popular_tags",
    "tag_counts",
    # Config
    "TagctxConfig",
    "get_config",
    "init_config",
    "configure_logging",
    # Storage
    "TagStore",
    "get_store",
]
