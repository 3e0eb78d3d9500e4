from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from resume_intake.core import settings
from resume_intake.errors import AnalysisError
from resume_intake.models import TargetJobInfo
from resume_intake.services.keywords import (
    description_is_too_short,
    keyword_match,
    keywords_for,
    semantic_match,
)
from resume_intake.services.scoring import (
    build_suggestions,
    compute_scores,
    content_signals,
    detect_formatting_flags,
)

logger = logging.getLogger(__name__)

_NO_SEMANTIC = {"semantic_hits": [], "semantic_misses": [], "semantic_matches": [], "semantic_coverage": 0.0}


def analyze_resume(
    resume_text: str,
    target_job: TargetJobInfo,
    semantic: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Score extracted resume text against a target job.

    Blocking (model inference); call it from a worker thread.

    Raises:
        AnalysisError: resume text or job title is missing.
    """
    if not (resume_text or "").strip():
        raise AnalysisError("Resume text is required")
    if not (target_job.title or "").strip():
        raise AnalysisError("Target job title is required")

    semantic = settings.SEMANTIC_MATCHING if semantic is None else semantic

    keywords, source = keywords_for(target_job)
    kw = keyword_match(resume_text, keywords)
    sem = semantic_match(resume_text, keywords) if semantic and keywords else dict(_NO_SEMANTIC)

    fmt_flags = detect_formatting_flags(resume_text)
    signals = content_signals(resume_text)

    scores = compute_scores(
        kw["coverage"],
        sem["semantic_coverage"],
        fmt_flags,
        signals,
        semantic_used=bool(semantic and keywords),
    )
    suggestions = build_suggestions(
        fmt_flags,
        kw["missing"],
        sem["semantic_misses"],
        signals,
        job_title=target_job.title,
    )

    if source == "title" and target_job.description and description_is_too_short(target_job.description):
        suggestions["items"].insert(
            0,
            {
                "type": "keywords",
                "impact": "medium",
                "title": "Job description too short",
                "detail": "Paste a full job description (at least 2-3 paragraphs) or list keywords to get accurate matching.",
            },
        )

    logger.info(
        f"Analyzed resume for {target_job.title!r}: score {scores['total']}, "
        f"{len(kw['present'])}/{len(keywords)} keywords ({source})"
    )

    return {
        "target_job": target_job.to_dict(),
        "resume_text_preview": resume_text[:1200],
        "scores": scores,
        "keyword_analysis": {
            "source": source,
            "keywords": keywords,
            "present": kw["present"],
            "missing": kw["missing"],
            "coverage": kw["coverage"],
            "semantic_hits": sem["semantic_hits"],
            "semantic_misses": sem["semantic_misses"],
            "semantic_coverage": sem["semantic_coverage"],
            "semantic_matches": sem["semantic_matches"],
        },
        "formatting_flags": fmt_flags,
        "content_signals": signals,
        "suggestions": suggestions,
    }
