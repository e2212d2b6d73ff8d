"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file under tmp_path and a Config with no
credentials, so no stage ever reaches a model or a provider.
"""

from datetime import datetime, timezone

import pytest

from config import Config
from database import Database
from models.items import CandidateItem
from models.target import TargetType, WatchTarget


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config(tmp_path):
    """Credential-free configuration with instant retries."""
    return Config(
        db_path=tmp_path / "compass.db",
        reports_dir=tmp_path / "reports",
        log_dir=tmp_path / "log",
        retry_initial_backoff=0.0,
        source_timeout_seconds=5.0,
        scan_secret="s3cret",
        app_url="https://compass.example.com",
    )


@pytest.fixture
def db(config):
    database = Database(config.db_path)
    yield database
    database.close()


@pytest.fixture
def semaglutide():
    return WatchTarget(
        id="t-sema",
        name="semaglutide",
        display_name="Ozempic",
        aliases=["NN9535"],
        type=TargetType.DRUG,
        therapeutic_area="metabolic",
        notes="trial discontinuations only",
    )


@pytest.fixture
def tirzepatide():
    return WatchTarget(id="t-tirz", name="tirzepatide", display_name="Mounjaro")


@pytest.fixture
def stored_targets(db, semaglutide, tirzepatide):
    """Both targets persisted, in insertion order."""
    return [db.add_target(semaglutide), db.add_target(tirzepatide)]


@pytest.fixture
def make_item():
    """Factory for candidate items attributed to semaglutide by default."""
    def _make(external_id, title, target_id="t-sema", abstract="", **fields):
        return CandidateItem(
            target_id=target_id,
            external_id=external_id,
            title=title,
            url=f"https://example.com/{external_id}",
            abstract=abstract,
            published_at=fields.pop("published_at", datetime(2025, 1, 5, tzinfo=timezone.utc)),
            **fields,
        )
    return _make
