import pytest

from mediagen.config import (
    SIGNED_URL_TTL,
    ChargePolicy,
    load_credit_settings,
    load_database,
    load_provider_settings,
    load_storage_settings,
)
from mediagen.credits.credit_ledger import CreditLedger


def test_results_bucket_is_required(monkeypatch) -> None:
    monkeypatch.delenv("RESULTS_BUCKET", raising=False)

    with pytest.raises(RuntimeError, match="RESULTS_BUCKET"):
        load_storage_settings()


def test_storage_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("RESULTS_BUCKET", " owned-results ")
    monkeypatch.setenv("VEO_OUTPUT_BUCKET", "veo-out")
    monkeypatch.setenv("VEO_OUTPUT_PREFIX", "/renders/")
    monkeypatch.delenv("GCS_STORAGE_EMULATOR_HOST", raising=False)

    settings = load_storage_settings()

    assert settings.results_bucket == "owned-results"
    assert settings.veo_output_prefix == "renders"
    assert settings.emulator_host is None
    assert settings.signed_url_ttl == SIGNED_URL_TTL
    assert SIGNED_URL_TTL.total_seconds() == 900


def test_provider_settings_defaults(monkeypatch) -> None:
    for name in ("GOOGLE_CLOUD_PROJECT_ID", "BYTEPLUS_API_KEY", "DEFAULT_MODEL_ALIAS", "BYTEPLUS_API_ENDPOINT"):
        monkeypatch.delenv(name, raising=False)

    settings = load_provider_settings()

    assert settings.project_id is None
    assert settings.byteplus_api_key is None
    assert settings.default_model_alias == "veo-2.0-generate-001"
    assert not settings.byteplus_endpoint.endswith("/")


def test_charge_policy_parsing(monkeypatch) -> None:
    monkeypatch.setenv("CREDIT_CHARGE_POLICY", "ON_SUBMIT")
    assert load_credit_settings().charge_policy == ChargePolicy.ON_SUBMIT

    monkeypatch.setenv("CREDIT_CHARGE_POLICY", "whenever")
    with pytest.raises(RuntimeError):
        load_credit_settings()


def test_generation_costs_per_media_kind(monkeypatch) -> None:
    monkeypatch.delenv("VIDEO_GENERATION_COST", raising=False)
    monkeypatch.delenv("IMAGE_GENERATION_COST", raising=False)
    settings = load_credit_settings()
    assert (settings.video_generation_cost, settings.image_generation_cost) == (5, 2)

    monkeypatch.setenv("IMAGE_GENERATION_COST", "3")
    assert load_credit_settings().image_generation_cost == 3


def test_load_database_seeds_default_account(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'mediagen.db'}")
    monkeypatch.setenv("DEFAULT_ACCOUNT_ID", "dev")
    monkeypatch.setenv("SEED_ACCOUNT_CREDITS", "40")
    monkeypatch.delenv("CREDIT_CHARGE_POLICY", raising=False)

    _, engine, session_factory = load_database(load_credit_settings())
    load_database(load_credit_settings())

    try:
        assert CreditLedger(session_factory).balance("dev") == 40
    finally:
        engine.dispose()
