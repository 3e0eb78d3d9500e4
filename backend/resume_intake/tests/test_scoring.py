import pytest

from resume_intake.errors import AnalysisError
from resume_intake.models import TargetJobInfo
from resume_intake.services.analyzer import analyze_resume
from resume_intake.services.keywords import keyword_match, keywords_for
from resume_intake.services.scoring import compute_scores, content_signals, detect_formatting_flags


def test_explicit_keywords_win():
    keywords, source = keywords_for(TargetJobInfo(title="Engineer", keywords="Python, C++, python"))
    assert source == "keywords"
    assert keywords == ["python", "c++"]


def test_title_fallback():
    keywords, source = keywords_for(TargetJobInfo(title="Senior Backend Engineer"))
    assert source == "title"
    assert keywords == ["backend", "engineer"]


def test_keyword_match_respects_word_boundaries():
    kw = keyword_match("Worked with Java and PostgreSQL", ["java", "javascript", "postgresql"])
    assert kw["present"] == ["java", "postgresql"]
    assert kw["missing"] == ["javascript"]
    assert kw["coverage"] == pytest.approx(66.67)


def test_formatting_flags(resume_text):
    flags = detect_formatting_flags(resume_text)
    assert flags["contact_info"]["email_detected"]
    assert flags["contact_info"]["phone_detected"]
    assert flags["contact_info"]["linkedin_detected"]
    assert flags["section_presence"]["missing_core_sections"] == []


def test_formatting_flags_missing_sections():
    flags = detect_formatting_flags("Just a name\nand a hobby")
    assert not flags["contact_info"]["email_detected"]
    assert set(flags["section_presence"]["missing_core_sections"]) == {"summary", "experience", "education", "skills"}


def test_content_signals(resume_text):
    signals = content_signals(resume_text)
    assert signals["bullet_lines"] == 4
    assert signals["has_numbers"]
    assert signals["action_verb_hits"] >= 3
    assert not signals["length_ok"]


def test_scores_are_bounded():
    flags = detect_formatting_flags("")
    scores = compute_scores(150.0, 0.0, flags, content_signals(""))
    assert 0 <= scores["total"] <= 100
    assert scores["breakdown"]["keywords"] == 45.0


def test_analyze_resume(resume_text):
    result = analyze_resume(
        resume_text,
        TargetJobInfo(title="Platform Engineer", company="Acme", keywords="python, terraform, golang"),
        semantic=False,
    )

    ka = result["keyword_analysis"]
    assert ka["present"] == ["python", "terraform"]
    assert ka["missing"] == ["golang"]
    assert ka["semantic_matches"] == []
    assert result["target_job"]["company"] == "Acme"
    assert 0 < result["scores"]["total"] <= 100

    titles = [item["title"] for item in result["suggestions"]["items"]]
    assert "Add missing keywords" in titles
    assert "Add contact information" not in titles


def test_short_description_hint(resume_text):
    result = analyze_resume(
        resume_text,
        TargetJobInfo(title="Backend Engineer", description="Python role"),
        semantic=False,
    )
    assert result["keyword_analysis"]["source"] == "title"
    assert result["suggestions"]["items"][0]["title"] == "Job description too short"


@pytest.mark.parametrize("text,title,message", [
    ("", "Engineer", "Resume text is required"),
    ("Jane Doe", "", "Target job title is required"),
])
def test_analyze_resume_preconditions(text, title, message):
    with pytest.raises(AnalysisError) as exc:
        analyze_resume(text, TargetJobInfo(title=title), semantic=False)
    assert exc.value.message == message
