import pytest

from okrhub import create_app
from okrhub.external_id import EntityKind, derive_id
from okrhub.models import db
from okrhub.services.entity_service import EntityService


@pytest.fixture
def app():
    """Create Flask application for testing, backed by in-memory SQLite."""
    app = create_app(config_overrides={
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SCHEDULER_ENABLED": False,
        "OKRHUB_SOURCE_APP": "acme",
        "LINKHUB_ENDPOINT_URL": None,
        "LINKHUB_KEY_PREFIX": None,
        "LINKHUB_SIGNING_SECRET": None,
        "LOG_FILE": None,
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


# ==============================================================================
# Reference ids (teams, companies and users live in LinkHub, never locally)
# ==============================================================================

@pytest.fixture
def team_id():
    return derive_id("acme", EntityKind.TEAM, ["sales"])


@pytest.fixture
def company_id():
    return derive_id("acme", EntityKind.COMPANY, ["acme inc"])


@pytest.fixture
def user_id():
    return derive_id("acme", EntityKind.USER, ["jane@acme.test"])


# ==============================================================================
# Entities
# ==============================================================================

@pytest.fixture
def objective(app, team_id):
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="Grow revenue",
        description="Grow revenue",
        team_external_id=team_id,
    )
    assert result.success, result.error
    return result


@pytest.fixture
def indicator(app, company_id):
    result = EntityService.create(
        EntityKind.INDICATOR,
        source_app="acme",
        company_external_id=company_id,
        description="Monthly recurring revenue",
        symbol="$",
        periodicity="monthly",
    )
    assert result.success, result.error
    return result


@pytest.fixture
def key_result(app, team_id, objective, indicator):
    result = EntityService.create(
        EntityKind.KEY_RESULT,
        source_app="acme",
        objective_external_id=objective.external_id,
        indicator_external_id=indicator.external_id,
        team_external_id=team_id,
        target_value=100.0,
    )
    assert result.success, result.error
    return result


@pytest.fixture
def linkhub_settings(app):
    from okrhub.services.config_service import ConfigService
    return ConfigService.configure(
        "https://linkhub.test/",
        "lh_test",
        "s3cret",
        auto_sync_enabled=True,
        sync_interval_ms=5000,
        source_app="acme",
    )
