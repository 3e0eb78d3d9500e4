from __future__ import annotations

import re
from typing import Dict, Any, List

ACTION_VERBS = [
    "built", "developed", "implemented", "designed", "optimized", "improved", "reduced", "increased",
    "deployed", "integrated", "automated", "led", "owned", "created", "delivered", "tested", "managed",
]

SECTION_HINTS = {
    "summary": ["summary", "profile", "objective"],
    "experience": ["experience", "employment", "work history"],
    "education": ["education", "degree", "university", "college"],
    "skills": ["skills", "technologies", "tools"],
    "projects": ["projects"],
    "certifications": ["certifications", "certificates"],
}
CORE_SECTIONS = ["summary", "experience", "education", "skills"]

# word-count window a one/two page resume usually falls in
MIN_WORDS = 200
MAX_WORDS = 800


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def detect_formatting_flags(text: str) -> Dict[str, Any]:
    t = (text or "").lower()
    lines = [ln.strip() for ln in (text or "").splitlines() if ln.strip()]
    short_line_ratio = 0.0
    if lines:
        short_line_ratio = sum(1 for ln in lines if len(ln) <= 25) / len(lines)

    detected = [name for name, hints in SECTION_HINTS.items() if any(h in t for h in hints)]

    return {
        "contact_info": {
            "email_detected": bool(re.search(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", t)),
            "phone_detected": bool(re.search(r"(\+?\d[\d \-\(\)]{8,}\d)", t)),
            "linkedin_detected": "linkedin.com" in t,
        },
        # lots of very short lines usually means text pulled out of columns
        "possible_multi_column_layout": len(lines) >= 10 and short_line_ratio > 0.45,
        "section_presence": {
            "detected_sections": detected,
            "missing_core_sections": [s for s in CORE_SECTIONS if s not in detected],
        },
        "readability": {
            "line_count": len(lines),
            "short_line_ratio": round(short_line_ratio, 3),
        },
    }


def content_signals(resume_text: str) -> Dict[str, Any]:
    text = resume_text or ""
    t = text.lower()
    word_count = len(text.split())

    return {
        "word_count": word_count,
        "length_ok": MIN_WORDS <= word_count <= MAX_WORDS,
        "bullet_lines": sum(1 for ln in text.splitlines() if ln.strip().startswith(("-", "•", "*"))),
        "has_numbers": bool(re.search(r"\b\d+(\.\d+)?%?\b", t)),
        "action_verb_hits": sum(1 for v in ACTION_VERBS if re.search(rf"\b{re.escape(v)}\b", t)),
    }


def _score_formatting(fmt_flags: dict) -> float:
    """0..25"""
    contact = fmt_flags.get("contact_info", {})
    missing_core = fmt_flags.get("section_presence", {}).get("missing_core_sections", [])

    score = 25.0
    if not contact.get("email_detected"):
        score -= 5.0
    if not contact.get("phone_detected"):
        score -= 3.0
    score -= min(8.0, 2.0 * len(missing_core))
    if fmt_flags.get("possible_multi_column_layout"):
        score -= 6.0
    return _clamp(score, 0.0, 25.0)


def _score_content(signals: dict) -> float:
    """0..30"""
    score = 30.0
    bullets = signals.get("bullet_lines", 0)
    if bullets < 6:
        score -= 6.0
    elif bullets < 12:
        score -= 3.0
    if not signals.get("has_numbers"):
        score -= 8.0
    verbs = signals.get("action_verb_hits", 0)
    if verbs == 0:
        score -= 8.0
    elif verbs < 3:
        score -= 4.0
    if not signals.get("length_ok"):
        score -= 4.0
    return _clamp(score, 0.0, 30.0)


def _score_keywords(keyword_coverage: float, semantic_coverage: float, semantic_used: bool) -> float:
    """
    0..45. Exact matches weigh 70% and semantic matches 30% when semantic
    matching ran; otherwise exact coverage alone.
    """
    kc = _clamp(float(keyword_coverage or 0.0), 0.0, 100.0)
    if semantic_used:
        sc = _clamp(float(semantic_coverage or 0.0), 0.0, 100.0)
        combined = 0.7 * kc + 0.3 * sc
    else:
        combined = kc
    return round(combined / 100.0 * 45.0, 2)


def compute_scores(
    keyword_coverage: float,
    semantic_coverage: float,
    fmt_flags: dict,
    signals: dict,
    semantic_used: bool = False,
) -> Dict[str, Any]:
    keywords_score = _score_keywords(keyword_coverage, semantic_coverage, semantic_used)
    formatting_score = round(_score_formatting(fmt_flags), 2)
    content_score = round(_score_content(signals), 2)

    total = round(_clamp(keywords_score + formatting_score + content_score, 0.0, 100.0), 2)
    return {
        "total": total,
        "breakdown": {
            "keywords": keywords_score,
            "formatting": formatting_score,
            "content": content_score,
        },
    }


def build_suggestions(
    fmt_flags: dict,
    kw_missing: List[str],
    semantic_misses: List[str],
    signals: dict,
    job_title: str = "",
) -> Dict[str, Any]:
    items = []

    def add(kind: str, impact: str, title: str, detail: str) -> None:
        items.append({"type": kind, "impact": impact, "title": title, "detail": detail})

    contact = fmt_flags.get("contact_info", {})
    if not contact.get("email_detected") or not contact.get("phone_detected"):
        add("format", "high", "Add contact information",
            "Include your email, phone number and LinkedIn profile at the top of your resume.")

    missing_core = fmt_flags.get("section_presence", {}).get("missing_core_sections", [])
    if "experience" in missing_core:
        add("structure", "high", "Add professional experience",
            "List your work history with 3-5 bullet points of achievements per role.")
    elif missing_core:
        add("structure", "medium", "Add core sections",
            f"Consider adding: {', '.join(missing_core)} with clear headings.")

    if fmt_flags.get("possible_multi_column_layout"):
        add("format", "medium", "Avoid multi-column layout",
            "ATS systems can misread columns. Use a single-column layout with simple headings.")

    if kw_missing:
        target = f" for {job_title}" if job_title else ""
        add("keywords", "high", "Add missing keywords",
            f"Keywords expected{target} that were not found: {', '.join(kw_missing[:12])}")

    if semantic_misses:
        add("keywords", "medium", "Cover related skills",
            f"These terms have no closely related line in your resume: {', '.join(semantic_misses[:10])}")

    if not signals.get("has_numbers"):
        add("content", "medium", "Quantify impact",
            "Add metrics: latency reduced, revenue grown, users served, time saved.")

    if signals.get("action_verb_hits", 0) < 3:
        add("content", "low", "Start bullets with action verbs",
            "Lead with verbs such as built, led, delivered or optimized.")

    if not signals.get("length_ok"):
        words = signals.get("word_count", 0)
        hint = "expand on your achievements" if words < MIN_WORDS else "trim older or less relevant detail"
        add("content", "low", "Adjust resume length",
            f"Your resume has {words} words; aim for {MIN_WORDS}-{MAX_WORDS} and {hint}.")

    return {"items": items}
