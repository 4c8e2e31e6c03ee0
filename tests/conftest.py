import os
import tempfile

import pytest

from tagctx.config import TagctxConfig
from tagctx.store import TagStore

from taggable_models import User


@pytest.fixture
def temp_db():
    """Create a temporary database file path."""
    with tempfile.TemporaryDirectory(prefix="tagctx_test_db_") as tmpdir:
        yield os.path.join(tmpdir, "test.db")


@pytest.fixture
def store(temp_db):
    """Empty TagStore on a temporary SQLite file, independent of user config."""
    return TagStore(path=temp_db, config=TagctxConfig())


@pytest.fixture
def session(store):
    """Open session on the test store; the test commits what it needs."""
    session = store.Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clean_tagctx_env(monkeypatch, tmp_path):
    """
    Clean environment without TAGCTX_ variables and with HOME in a temp directory.
    """
    for key in list(os.environ.keys()):
        if key.startswith("TAGCTX_"):
            monkeypatch.delenv(key, raising=False)

    mock_home = tmp_path / "home"
    mock_home.mkdir()
    monkeypatch.setenv("HOME", str(mock_home))
    monkeypatch.chdir(tmp_path)

    return tmp_path


class UserBuilder:
    """
    Test data builder for users with a fluent API.

    Usage:
        builder = UserBuilder(store)
        builder.named("alice").with_skills("python", "sql").build()
    """
    def __init__(self, store):
        self.store = store
        self.name = "user"
        self.active = True
        self.tags = {}

    def named(self, name):
        self.name = name
        return self

    def inactive(self):
        self.active = False
        return self

    def with_skills(self, *names):
        self.tags["skills"] = list(names)
        return self

    def with_colors(self, *names):
        self.tags["colors"] = list(names)
        return self

    def build(self):
        """Save the user and return it (detached, tags loaded)."""
        user = User(name=self.name, active=self.active)
        for context, names in self.tags.items():
            user.set_tags(context, names)
        assert self.store.save(user)
        return user


@pytest.fixture
def user_builder(store):
    def _builder():
        return UserBuilder(store)
    return _builder


@pytest.fixture
def populated_store(store, user_builder):
    """
    Store with a small, known set of tagged users.

        alice: skills [python, sql, go]      colors [red, blue]
        bob:   skills [python, rust]         colors [red]
        carol: skills [sql]                  colors [green, blue]
        dave:  skills []                     colors [] (inactive)
    """
    user_builder().named("alice").with_skills("python", "sql", "go").with_colors("red", "blue").build()
    user_builder().named("bob").with_skills("python", "rust").with_colors("red").build()
    user_builder().named("carol").with_skills("sql").with_colors("green", "blue").build()
    user_builder().named("dave").inactive().build()
    return store
