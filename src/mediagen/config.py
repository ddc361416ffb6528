"""Application configuration builder."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db

SIGNED_URL_TTL = timedelta(minutes=15)


class ChargePolicy(StrEnum):
    """When the credit ledger is debited for a generation."""

    ON_COMPLETION = "on_completion"
    ON_SUBMIT = "on_submit"


@dataclass(slots=True)
class ProviderSettings:
    project_id: str | None
    location: str
    byteplus_endpoint: str
    byteplus_api_key: str | None
    default_model_alias: str
    submit_timeout_seconds: float = 30.0
    status_timeout_seconds: float = 15.0


@dataclass(slots=True)
class StorageSettings:
    veo_output_bucket: str | None
    veo_output_prefix: str
    veo_output_region: str
    veo_output_class: str
    results_bucket: str
    results_prefix: str
    emulator_host: str | None = None
    scan_timeout_seconds: float = 15.0
    signed_url_ttl: timedelta = SIGNED_URL_TTL


@dataclass(slots=True)
class CreditSettings:
    charge_policy: ChargePolicy
    video_generation_cost: int
    default_account_id: str
    seed_account_credits: int = 0
    image_generation_cost: int = 2


@dataclass(slots=True)
class AppConfig:
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    providers: ProviderSettings
    storage: StorageSettings
    credits: CreditSettings
    # Pre-built google.cloud.storage.Client (or compatible); built at startup when None.
    storage_client: Any | None = field(default=None)


def load_env_files() -> None:
    load_dotenv(".env.local")
    load_dotenv(".env", override=False)


def load_provider_settings() -> ProviderSettings:
    return ProviderSettings(
        project_id=os.getenv("GOOGLE_CLOUD_PROJECT_ID") or None,
        location=os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1"),
        byteplus_endpoint=os.getenv(
            "BYTEPLUS_API_ENDPOINT", "https://ark.ap-southeast.bytepluses.com/api/v3"
        ).rstrip("/"),
        byteplus_api_key=os.getenv("BYTEPLUS_API_KEY") or None,
        default_model_alias=os.getenv("DEFAULT_MODEL_ALIAS", "veo-2.0-generate-001"),
        submit_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", 30)),
        status_timeout_seconds=float(os.getenv("STATUS_TIMEOUT_SECONDS", 15)),
    )


def load_storage_settings() -> StorageSettings:
    results_bucket = (os.getenv("RESULTS_BUCKET") or "").strip()
    if not results_bucket:
        raise RuntimeError("Environment variable RESULTS_BUCKET is not set")

    return StorageSettings(
        veo_output_bucket=os.getenv("VEO_OUTPUT_BUCKET") or None,
        veo_output_prefix=os.getenv("VEO_OUTPUT_PREFIX", "video-outputs").strip("/"),
        veo_output_region=os.getenv("VEO_OUTPUT_BUCKET_REGION", "us-central1"),
        veo_output_class=os.getenv("VEO_OUTPUT_BUCKET_CLASS", "STANDARD"),
        results_bucket=results_bucket,
        results_prefix=os.getenv("RESULTS_PREFIX", "generations").strip("/"),
        emulator_host=os.getenv("GCS_STORAGE_EMULATOR_HOST") or None,
        scan_timeout_seconds=float(os.getenv("SCAN_TIMEOUT_SECONDS", 15)),
    )


def load_credit_settings() -> CreditSettings:
    raw_policy = os.getenv("CREDIT_CHARGE_POLICY", ChargePolicy.ON_COMPLETION.value)
    try:
        policy = ChargePolicy(raw_policy.strip().lower())
    except ValueError as exc:
        raise RuntimeError(f"Unsupported CREDIT_CHARGE_POLICY '{raw_policy}'") from exc

    return CreditSettings(
        charge_policy=policy,
        video_generation_cost=int(os.getenv("VIDEO_GENERATION_COST", 5)),
        default_account_id=os.getenv("DEFAULT_ACCOUNT_ID", "default"),
        seed_account_credits=int(os.getenv("SEED_ACCOUNT_CREDITS", 0)),
        image_generation_cost=int(os.getenv("IMAGE_GENERATION_COST", 2)),
    )


def load_database(credits: CreditSettings | None = None) -> tuple[str, Engine, sessionmaker[Session]]:
    """Build engine and session factory and make sure tables exist."""
    load_env_files()

    database_url = os.getenv("DATABASE_URL", "sqlite:///mediagen.db")
    engine = create_engine(database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    seed_account_id = None
    seed_credits = 0
    if credits is not None and credits.seed_account_credits:
        seed_account_id = credits.default_account_id
        seed_credits = credits.seed_account_credits
    init_db(engine, session_factory, seed_account_id=seed_account_id, seed_credits=seed_credits)
    return database_url, engine, session_factory


def load_config() -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    load_env_files()
    storage = load_storage_settings()
    providers = load_provider_settings()
    credits = load_credit_settings()
    database_url, engine, session_factory = load_database(credits)

    return AppConfig(
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
        providers=providers,
        storage=storage,
        credits=credits,
    )
