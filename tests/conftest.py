from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test_riresume.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("LOCAL_LLM_ENABLED", "false")

from collections.abc import Iterator  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from riresume.config import Settings  # noqa: E402
from riresume.core.events import EventBus  # noqa: E402
from riresume.core.runtime import reset_event_bus  # noqa: E402
from riresume.db import models  # noqa: E402,F401
from riresume.db.base import Base  # noqa: E402
from riresume.db.repositories import Repository  # noqa: E402
from riresume.db.session import SessionLocal, engine  # noqa: E402
from riresume.llm.router import LLMRouter  # noqa: E402

Path("./data").mkdir(exist_ok=True)


@pytest.fixture(autouse=True)
def reset_db() -> Iterator[None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def bus() -> EventBus:
    return reset_event_bus()


@pytest.fixture
def db() -> Iterator[Session]:
    with SessionLocal() as session:
        yield session


@pytest.fixture
def offline_router() -> LLMRouter:
    return LLMRouter(Settings(openai_api_key="", local_llm_enabled=False))


@pytest.fixture
def make_user(db: Session):
    def _make(uid: str = "user-1", balance: int = 100, role: str = "user", email: str = "") -> str:
        Repository(db).create_user(
            uid=uid,
            email=email or f"{uid}@example.com",
            display_name=uid,
            provider="password",
            role=role,
            token_balance=balance,
        )
        return uid

    return _make


@pytest.fixture
def job_posting() -> dict:
    return {
        "title": "Backend Engineer",
        "company": "Acme",
        "description": "We need 3+ years building APIs with Python, SQL and Docker on AWS.",
        "requirements": ["Python", "SQL", "Docker"],
        "skills": ["Python", "SQL", "Docker", "AWS"],
    }


@pytest.fixture
def resume_doc() -> dict:
    return {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "summary": "Engineer who ships reliable services.",
        "skills": ["Python", "Git"],
        "experience": [
            {
                "title": "Software Engineer",
                "company": "Initech",
                "start_date": "2021",
                "end_date": "2024",
                "bullets": ["Built REST APIs in Python", "Tuned SQL queries for reporting"],
            }
        ],
        "education": [{"degree": "BSc Computer Science", "school": "State University", "year": "2020"}],
    }


@pytest.fixture
def make_analysis(db: Session, bus: EventBus, job_posting: dict, resume_doc: dict):
    from riresume.core.history import HistoryManager
    from riresume.types import JobPosting, MatchAnalysis, SkillMatch

    def _make(user_id: str = "user-1", ats_score: int = 65, **job_overrides):
        match = MatchAnalysis(
            matched_skills=[SkillMatch(skill="Python", importance="critical", user_has=True)],
            missing_skills=[SkillMatch(skill="Docker", importance="critical")],
            keyword_density=50,
        )
        return HistoryManager(db, bus).save_analysis(
            user_id=user_id,
            job=JobPosting(**(job_posting | job_overrides)),
            resume=resume_doc,
            match_analysis=match,
            ats_score=ats_score,
            action="optimize",
        )

    return _make
