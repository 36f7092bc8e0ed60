from __future__ import annotations

from datetime import datetime, timezone

from services.dispatch.pdf import render_symptom_report, sanitize_filename, wrap_text


def test_wrap_text_fills_lines_up_to_the_limit() -> None:
    text = " ".join(["word"] * 40)

    lines = wrap_text(text)

    assert all(len(line) <= 95 for line in lines)
    assert lines[0] == " ".join(["word"] * 19)
    assert " ".join(lines) == text


def test_overlong_word_gets_its_own_line() -> None:
    long_word = "x" * 120

    assert wrap_text(f"short {long_word} tail", max_length=20) == ["short", long_word, "tail"]


def test_wrap_text_of_blank_input_is_empty() -> None:
    assert wrap_text("   ") == []


def test_sanitize_filename() -> None:
    assert sanitize_filename("  chest x-ray (front).png ") == "chest_x-ray__front_.png"
    assert sanitize_filename("") == "document"
    assert len(sanitize_filename("a" * 200)) == 60


def test_rendered_report_is_a_pdf() -> None:
    data = render_symptom_report(
        "Shortness of breath and wheezing since morning. " * 200,
        title="Symptoms Report",
        generated_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )

    assert data.startswith(b"%PDF")
    assert data.rstrip().endswith(b"%%EOF")
