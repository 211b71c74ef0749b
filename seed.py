from __future__ import annotations

import json
import logging
import os
import re
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Any, Iterable

from dotenv import load_dotenv

load_dotenv()

from audit_api.db.session import SessionLocal
from audit_api.models import Article, Audit, Chapter, Organization, Question

logger = logging.getLogger(__name__)

SEED_VERSION = "dora.v1"

CHAPTER_INFO: dict[int, dict[str, str]] = {
    2: {
        "title": "ICT Risk Management",
        "description": "Requirements for ICT risk management framework, governance, business continuity, backup policies, and communication.",
    },
    3: {
        "title": "ICT-Related Incident Management, Classification and Reporting",
        "description": "Requirements for incident management process, classification, and reporting to competent authorities.",
    },
    4: {
        "title": "Digital Operational Resilience Testing",
        "description": "Requirements for resilience testing programs including threat-led penetration testing.",
    },
    5: {
        "title": "Managing ICT Third-Party Risk",
        "description": "Requirements for managing third-party ICT service providers and contractual arrangements.",
    },
    6: {
        "title": "Information-Sharing Arrangements",
        "description": "Requirements for information sharing on cyber threats among financial entities.",
    },
}

# Built-in catalogue; a full questionnaire export can be supplied with SEED_QUESTIONS_FILE.
DEFAULT_QUESTIONS: list[dict[str, Any]] = [
    {"chapter": 2, "article": "Article 5", "title": "Governance and organisation", "ref": "5.1",
     "question": "Has the management body defined, approved and overseen the ICT risk management framework?"},
    {"chapter": 2, "article": "Article 5", "title": "Governance and organisation", "ref": "5.2",
     "question": "Are roles and responsibilities for all ICT-related functions clearly assigned and documented?"},
    {"chapter": 2, "article": "Article 6", "title": "ICT risk management framework", "ref": "6.1",
     "question": "Is there a documented ICT risk management framework covering strategies, policies, procedures and tools?"},
    {"chapter": 2, "article": "Article 6", "title": "ICT risk management framework", "ref": "6.2",
     "question": "Is the ICT risk management framework reviewed at least yearly and after major ICT-related incidents?"},
    {"chapter": 2, "article": "Article 9", "title": "Protection and prevention", "ref": "9.1",
     "question": "Are ICT security policies in place that ensure availability, authenticity, integrity and confidentiality of data?"},
    {"chapter": 2, "article": "Article 11", "title": "Response and recovery", "ref": "11.1",
     "question": "Is there an ICT business continuity policy with documented response and recovery plans?"},
    {"chapter": 2, "article": "Article 12", "title": "Backup policies and procedures", "ref": "12.1",
     "question": "Are backup policies defined, including scope, frequency and restoration testing of backups?"},
    {"chapter": 3, "article": "Article 17", "title": "ICT-related incident management process", "ref": "17.1",
     "question": "Is there a documented process to detect, manage and notify ICT-related incidents?"},
    {"chapter": 3, "article": "Article 18", "title": "Classification of ICT-related incidents", "ref": "18.1",
     "question": "Are ICT-related incidents classified using criteria such as clients affected, duration and data losses?"},
    {"chapter": 3, "article": "Article 19", "title": "Reporting of major ICT-related incidents", "ref": "19.1",
     "question": "Are major ICT-related incidents reported to the competent authority within the required timelines?"},
    {"chapter": 4, "article": "Article 24", "title": "General requirements for testing", "ref": "24.1",
     "question": "Is a digital operational resilience testing programme established and maintained?"},
    {"chapter": 4, "article": "Article 26", "title": "Threat-led penetration testing", "ref": "26.1",
     "question": "Is advanced threat-led penetration testing carried out at least every three years where required?"},
    {"chapter": 5, "article": "Article 28", "title": "General principles", "ref": "28.1",
     "question": "Is a register of information maintained for all contractual arrangements with ICT third-party service providers?"},
    {"chapter": 5, "article": "Article 28", "title": "General principles", "ref": "28.2",
     "question": "Is there a strategy on ICT third-party risk, including exit strategies for critical services?"},
    {"chapter": 5, "article": "Article 30", "title": "Key contractual provisions", "ref": "30.1",
     "question": "Do contracts with ICT third-party providers include service levels, data location and termination rights?"},
    {"chapter": 6, "article": "Article 45", "title": "Information-sharing arrangements", "ref": "45.1",
     "question": "Does the organisation participate in arrangements to exchange cyber threat information and intelligence?"},
]

DEMO_ORG_NAME = "Demo Financial Services"
DEMO_AUDIT_NAME = "DORA readiness review"


def seed_uuid(name: str) -> uuid.UUID:
    """Deterministic ids so re-running the seed updates rather than duplicates."""
    return uuid.uuid5(uuid.NAMESPACE_URL, f"dora-audit/{SEED_VERSION}/{name}")


def load_questions(path: str | None) -> list[dict[str, Any]]:
    if not path:
        return DEFAULT_QUESTIONS
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _article_number(label: str) -> int | None:
    match = re.search(r"Article\s+(\d+)", label or "")
    return int(match.group(1)) if match else None


def seed_chapters(session) -> None:
    for chapter_id, info in CHAPTER_INFO.items():
        chapter = session.get(Chapter, chapter_id)
        if chapter is None:
            chapter = Chapter(id=chapter_id)
            session.add(chapter)
        chapter.title = info["title"]
        chapter.description = info["description"]
    session.flush()


def seed_questions(session, questions: Iterable[dict[str, Any]]) -> int:
    grouped: "OrderedDict[tuple[int, int], list[dict[str, Any]]]" = OrderedDict()
    for payload in questions:
        number = _article_number(payload.get("article", ""))
        if number is None:
            logger.warning("Skipping question with unrecognised article label: %s", payload.get("article"))
            continue
        grouped.setdefault((int(payload["chapter"]), number), []).append(payload)

    seeded = 0
    for (chapter_id, number), items in grouped.items():
        article_id = f"ch{chapter_id}-art{number}"
        article = session.get(Article, article_id)
        if article is None:
            article = Article(id=article_id, chapter_id=chapter_id, number=number)
            session.add(article)
        article.title = items[0]["title"]
        session.flush()

        for payload in items:
            question_id = f"{article_id}-{payload['ref']}"
            question = session.get(Question, question_id)
            if question is None:
                question = Question(id=question_id, article_id=article_id, ref=payload["ref"])
                session.add(question)
            question.text = payload["question"].strip()
            seeded += 1
    session.flush()
    return seeded


def seed_demo_organization(session) -> Organization:
    org = session.get(Organization, seed_uuid("organization:demo"))
    if org is None:
        org = Organization(id=seed_uuid("organization:demo"), name=DEMO_ORG_NAME)
        session.add(org)
        session.flush()

    audit = session.get(Audit, seed_uuid("audit:demo"))
    if audit is None:
        session.add(Audit(id=seed_uuid("audit:demo"), organization_id=org.id, name=DEMO_AUDIT_NAME))
        session.flush()
    return org


def run_seed(questions_file: str | None = None) -> None:
    session = SessionLocal()
    try:
        seed_chapters(session)
        seeded = seed_questions(session, load_questions(questions_file))
        org_id = seed_demo_organization(session).id
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info(
        "Seed applied: chapters=%s questions=%s demo_org=%s audit=%s",
        len(CHAPTER_INFO),
        seeded,
        org_id,
        seed_uuid("audit:demo"),
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed(os.getenv("SEED_QUESTIONS_FILE"))
