from __future__ import annotations

import os
import pathlib
import sys
import tempfile
import uuid
from typing import Iterator

import pytest

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

_TEST_DB_DIR = tempfile.mkdtemp(prefix="dora-audit-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DB_DIR}/test.db"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANALYSIS_LLM_CALL_DELAY_SECONDS"] = "0"
os.environ["ANALYSIS_INGESTION_RETRY_BACKOFF_SECONDS"] = "0"
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_REGION", "us-east-1")

import boto3
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from audit_api.config import AnalysisSettings, settings
from audit_api.db.session import SessionLocal, engine
from audit_api.dependencies.identity import Actor
from audit_api.main import app
from audit_api.models import Audit, Organization
from audit_api.models.base import Base

from fakes import FakeStorage

Base.metadata.create_all(bind=engine)


@pytest.fixture(scope="session")
def client() -> Iterator[TestClient]:
    """Provide a FastAPI TestClient instance."""
    with TestClient(app) as _client:
        yield _client


@pytest.fixture()
def db() -> Iterator[Session]:
    session = SessionLocal.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def cleanup_database() -> Iterator[None]:
    """Delete every row after each test to keep isolation."""
    yield
    app.dependency_overrides.clear()
    with SessionLocal.session_factory() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def actor() -> Actor:
    return Actor(user_id="auditor-1")


@pytest.fixture()
def fast_config() -> AnalysisSettings:
    """Default analysis settings without the inter-call pause."""
    return settings.analysis.model_copy(update={"llm_call_delay_seconds": 0.0})


@pytest.fixture()
def organization_id(db: Session) -> uuid.UUID:
    org = Organization(name="Demo Financial Services")
    db.add(org)
    db.commit()
    return org.id


@pytest.fixture()
def audit_id(db: Session, organization_id: uuid.UUID) -> uuid.UUID:
    audit = Audit(organization_id=organization_id, name="DORA readiness review")
    db.add(audit)
    db.commit()
    return audit.id


@pytest.fixture()
def mock_s3():
    from moto import mock_aws

    with mock_aws():
        s3 = boto3.client("s3", region_name=settings.aws.region)
        bucket = "test-dora-bucket"
        s3.create_bucket(Bucket=bucket)
        previous_bucket = settings.aws.s3_bucket
        settings.aws.s3_bucket = bucket
        try:
            yield s3
        finally:
            settings.aws.s3_bucket = previous_bucket
