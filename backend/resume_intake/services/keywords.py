from __future__ import annotations
import re
from typing import List, Dict, Any, Tuple

from keybert import KeyBERT
from sentence_transformers import SentenceTransformer, util

from resume_intake.models import TargetJobInfo

_kw_model = None
_emb_model = None

# descriptions shorter than this are too thin for keyphrase extraction
MIN_DESCRIPTION_WORDS = 12

_TITLE_STOP = {"senior", "junior", "lead", "staff", "principal", "sr", "jr", "ii", "iii", "the", "and", "of", "for"}


def _norm(s: str) -> str:
    s = s.lower().strip()
    s = re.sub(r"[^a-z0-9+#.\-/ ]+", " ", s)
    s = re.sub(r"\s+", " ", s)
    return s


def _unique(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for x in items:
        nx = _norm(x)
        if nx and nx not in seen:
            seen.add(nx)
            out.append(nx)
    return out


def get_models() -> Tuple[KeyBERT, SentenceTransformer]:
    global _kw_model, _emb_model
    if _emb_model is None:
        _emb_model = SentenceTransformer("all-MiniLM-L6-v2")
    if _kw_model is None:
        _kw_model = KeyBERT(model=_emb_model)
    return _kw_model, _emb_model


def description_is_too_short(description: str) -> bool:
    if not description:
        return True
    return len(description.strip().split()) < MIN_DESCRIPTION_WORDS


def extract_jd_keywords(job_description: str, top_n: int = 25) -> List[str]:
    jd = _norm(job_description)
    if not jd:
        return []

    kw_model, _ = get_models()
    phrases = kw_model.extract_keywords(
        jd,
        keyphrase_ngram_range=(1, 3),
        stop_words="english",
        top_n=top_n,
        use_mmr=True,
        diversity=0.5,
    )
    return _unique([p for p, _score in phrases if len(_norm(p)) >= 2])


def keywords_for(target_job: TargetJobInfo) -> Tuple[List[str], str]:
    """
    Pick the keywords to match against, and say where they came from:
    the user's comma-separated list, the job description, or the title.
    """
    explicit = _unique(target_job.keyword_list())
    if explicit:
        return explicit, "keywords"

    if not description_is_too_short(target_job.description or ""):
        extracted = extract_jd_keywords(target_job.description)
        if extracted:
            return extracted, "description"

    title_terms = [w for w in _norm(target_job.title or "").split() if w not in _TITLE_STOP and len(w) > 1]
    return _unique(title_terms), "title"


def keyword_match(resume_text: str, keywords: List[str]) -> Dict[str, Any]:
    rt = _norm(resume_text)
    present = []
    missing = []

    for k in keywords:
        if k and re.search(rf"(?<![a-z0-9]){re.escape(k)}(?![a-z0-9])", rt):
            present.append(k)
        else:
            missing.append(k)

    coverage = round(len(present) / len(keywords) * 100.0, 2) if keywords else 0.0
    return {"present": present, "missing": missing, "coverage": coverage}


def semantic_match(resume_text: str, keywords: List[str], threshold: float = 0.58) -> Dict[str, Any]:
    resume_lines = [ln.strip() for ln in resume_text.splitlines() if ln.strip()][:220]
    if not resume_lines or not keywords:
        return {"semantic_hits": [], "semantic_misses": list(keywords), "semantic_matches": [], "semantic_coverage": 0.0}

    _, emb_model = get_models()
    line_emb = emb_model.encode(resume_lines, convert_to_tensor=True, normalize_embeddings=True)
    kw_emb = emb_model.encode(keywords, convert_to_tensor=True, normalize_embeddings=True)

    sims = util.cos_sim(kw_emb, line_emb)  # [kws, lines]
    hits = []
    misses = []
    matches = []

    for i, kw in enumerate(keywords):
        best_score, best_idx = float(sims[i].max()), int(sims[i].argmax())
        if best_score >= threshold:
            hits.append(kw)
            matches.append({
                "keyword": kw,
                "best_line": resume_lines[best_idx][:180],
                "score": round(best_score, 3),
            })
        else:
            misses.append(kw)

    matches.sort(key=lambda m: m["score"], reverse=True)
    coverage = round(len(hits) / len(keywords) * 100.0, 2)
    return {
        "semantic_hits": hits,
        "semantic_misses": misses,
        "semantic_matches": matches,
        "semantic_coverage": coverage,
    }
