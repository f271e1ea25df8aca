import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_setlist_env():
    """Ensure settings and credentials from the developer's shell or .env do not leak into tests."""
    prefixes = ('SETLIST_', 'NAVIDROME_', 'SPOTIFY_')
    keys = [k for k in os.environ if k.startswith(prefixes)] + ['DATABASE_URI']
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with all tables."""
    from app.infrastructure.persistence import create_all_tables, create_engine_for

    engine = create_engine_for("sqlite://")
    create_all_tables(engine)
    yield engine
    engine.dispose()
