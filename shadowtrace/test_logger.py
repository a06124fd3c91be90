from __future__ import annotations

import builtins

from rich.text import Text

import shadowtrace.logger as st_logger


def _capture(monkeypatch, log: st_logger.ShadowTraceLogger) -> list[tuple[str, str]]:
    captured: list[tuple[str, str]] = []
    monkeypatch.setattr(log, "log", lambda msg, prefix="": captured.append((prefix, msg)))
    return captured


def test_api_wait_debug_is_gated_on_debug_mode(monkeypatch):
    quiet = st_logger.ShadowTraceLogger(debug=False)
    loud = st_logger.ShadowTraceLogger(debug=True)
    quiet_lines = _capture(monkeypatch, quiet)
    loud_lines = _capture(monkeypatch, loud)

    quiet.api_wait_debug("fflogs", 0.321)
    loud.api_wait_debug("fflogs", 12.5)

    assert quiet_lines == []
    assert len(loud_lines) == 1
    prefix, msg = loud_lines[0]
    assert "[DEBUG]" in prefix
    assert "12.500s" in msg


def test_api_wait_note_is_logged_once_per_endpoint(monkeypatch):
    log = st_logger.ShadowTraceLogger(debug=False)
    captured = _capture(monkeypatch, log)

    log.api_wait("fflogs", 30)
    log.api_wait("FFLOGS", 12)
    log.api_wait("oauth", 5)

    assert [msg.split(";")[0] for _, msg in captured] == [
        "API rate limiting active for FFLOGS",
        "API rate limiting active for OAUTH",
    ]
    assert all(prefix == "[INFO] " for prefix, _ in captured)


def test_retry_and_failure_lines(monkeypatch):
    log = st_logger.ShadowTraceLogger(debug=False)
    captured = _capture(monkeypatch, log)

    log.api_retry("Ranking pages 1-30", 1, 3, 2.0)
    log.api_failed("Ranking pages 1-30", 3)

    assert captured == [
        ("[WARNING] ", "Ranking pages 1-30 failed. Retrying in 2s... (attempt 1/3)"),
        ("[ERROR] ", "Ranking pages 1-30 failed after 3 attempts. Aborting."),
    ]


def test_status_prints_inline_and_pads_shorter_lines(monkeypatch):
    captured: list[tuple[tuple[object, ...], dict]] = []
    monkeypatch.setattr(builtins, "print", lambda *args, **kwargs: captured.append((args, kwargs)))
    log = st_logger.ShadowTraceLogger(debug=False)
    captured.clear()

    log.status("Ultima: Ranking pages 1-30/47")
    log.status("Ultima: done")

    first, second = captured
    assert str(first[0][0]).startswith("\rUltima: Ranking pages 1-30/47")
    assert first[1].get("end") == ""
    assert len(str(second[0][0])) == len(str(first[0][0]))


def test_log_clears_inline_status_before_print(monkeypatch):
    captured_print: list[tuple[tuple[object, ...], dict]] = []
    captured_screen: list[object] = []
    monkeypatch.setattr(builtins, "print", lambda *args, **kwargs: captured_print.append((args, kwargs)))
    log = st_logger.ShadowTraceLogger(debug=False)
    monkeypatch.setattr(log._console, "print", lambda msg, **kwargs: captured_screen.append(msg))
    captured_print.clear()

    log.status("Verifying matches...")
    log.info("Done")

    assert len(captured_print) == 2
    assert str(captured_print[1][0][0]).startswith("\r")
    assert isinstance(captured_screen[0], Text)
    assert captured_screen[0].plain == "Done"


def test_screen_text_styles_prefixes_and_outcomes(monkeypatch):
    log = st_logger.ShadowTraceLogger(debug=False)
    monkeypatch.setattr(log._console, "print", lambda *_args, **_kwargs: None)

    candidate = log._screen_text("Candidate found: Alice (pub1#3), start diff 1200ms, duration diff 80ms")
    verified = log._screen_text("Match verified: Alice in pub1#3")
    rejected = log._screen_text("Candidate Bob in pub2#1 not verified")
    warning = log._screen_text("[WARNING] Ranking pages 1-30 failed.")
    plain = log._screen_text("[Fight 2/3] Searching")

    assert any(span.style == "yellow" for span in candidate.spans)
    assert any(span.style == "green" for span in verified.spans)
    assert any(span.style == "red" for span in rejected.spans)
    assert any(span.style == "yellow" for span in warning.spans)
    assert plain.spans == []
    assert plain.plain == "[Fight 2/3] Searching"


def test_log_writes_plain_text_to_file(tmp_path, monkeypatch):
    out = tmp_path / "logs" / "shadowtrace.log"
    log = st_logger.ShadowTraceLogger(log_file=out, debug=False)
    monkeypatch.setattr(log._console, "print", lambda *_args, **_kwargs: None)

    log.warning("[Fight 1/2] literal bracketed message")
    log.close()

    text = out.read_text(encoding="utf-8")
    assert "[WARNING] [Fight 1/2] literal bracketed message" in text
    assert "Ended session" in text


def test_get_logger_falls_back_to_screen_logger(monkeypatch):
    monkeypatch.setattr(st_logger, "_logger", None)

    log = st_logger.get_logger()

    assert isinstance(log, st_logger.ShadowTraceLogger)
    assert st_logger.get_logger() is log
