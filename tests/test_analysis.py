import json
import random
import threading
import pytest
from proxyscan import analysis
from proxyscan.analysis import (FLAG_REASONS, FallbackTuning, analyze, build_prompt, derive_status,
                                extract_json_block, fallback_analysis, format_rows, ip_analysis,
                                parse_delegated_response, seating_analysis, GeminiTextGenerator, default_generator)
from proxyscan.models import AnalysisResult, AttendanceTable, FlaggedEntry, SessionStatus


GOOD_RESPONSE = """Here is my analysis:
```json
{
  "proxyProbability": 0.42,
  "insights": ["Roll numbers 101 and 102 sit together", "Bench positions look regular"],
  "flaggedEntries": [
    {"studentName": "Asha", "rollNumber": "101", "benchId": "CSE-A-R1C1", "reason": "Sequential roll cluster", "confidence": 0.8},
    {"studentName": "Ravi", "rollNumber": "102", "benchId": "CSE-A-R1C2", "reason": "Sequential roll cluster", "confidence": 0.6}
  ]
}
```
Let me know if you need more."""


@pytest.mark.parametrize("p, expected", [
    (0.0, SessionStatus.CLEAN),
    (0.19999, SessionStatus.CLEAN),
    (0.2, SessionStatus.SUSPICIOUS),
    (0.49999, SessionStatus.SUSPICIOUS),
    (0.5, SessionStatus.FLAGGED),
    (1.0, SessionStatus.FLAGGED),
])
def test_status_thresholds(p, expected):
    assert derive_status(p) == expected


def test_format_rows_and_prompt(basic_table):
    text = format_rows(AttendanceTable.from_records(["Name", "Roll"], [{"Name": "Asha", "Roll": ""}]))
    assert text == "1. Name: Asha, Roll: N/A"

    prompt = build_prompt(basic_table)
    assert "Bench Position Anomalies" in prompt
    assert "Roll Number Clusters" in prompt
    assert prompt.endswith("3. Name: Meera, Roll: 103, Bench: CSE-A-R2C1, Present: no")


def test_extract_json_block_is_greedy():
    assert extract_json_block('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'
    assert extract_json_block("no json here") is None
    assert extract_json_block("") is None


def test_parse_delegated_response():
    parsed = parse_delegated_response(GOOD_RESPONSE)
    assert parsed["proxy_probability"] == 0.42
    assert len(parsed["insights"]) == 2
    assert [f.roll_number for f in parsed["flagged_entries"]] == ["101", "102"]


def test_parse_delegated_response_rejects_garbage():
    with pytest.raises(ValueError):
        parse_delegated_response("I cannot analyze this.")
    with pytest.raises(ValueError):
        parse_delegated_response("{not json at all}")


def test_delegated_analysis_success(basic_table, fake_generator):
    gen = fake_generator(GOOD_RESPONSE)
    result = analyze(basic_table, generator=gen)

    assert len(gen.prompts) == 1
    assert "1. Name: Asha" in gen.prompts[0]
    assert result.total_students == 3
    assert result.present_count == 2
    assert result.absent_count == 1
    assert result.proxy_probability == pytest.approx(0.42)
    assert result.flagged_count == 2 == len(result.flagged_entries)
    assert result.insights[0] == "Roll numbers 101 and 102 sit together"


def test_delegated_values_are_clamped(basic_table, fake_generator):
    payload = {
        "proxyProbability": 1.7,
        "flaggedCount": 99,
        "insights": "single insight",
        "flaggedEntries": [
            {"studentName": "Asha", "rollNumber": "101", "benchId": "B1", "reason": "x", "confidence": -0.3},
            {"studentName": "Asha again", "rollNumber": "101", "benchId": "B1", "reason": "dup", "confidence": 0.9},
            "not an entry",
        ],
    }
    result = analyze(basic_table, generator=fake_generator(json.dumps(payload)))

    assert result.proxy_probability == 1.0
    assert result.flagged_count == 1
    assert result.flagged_entries[0].confidence == 0.0
    assert result.insights == ["single insight"]


@pytest.mark.parametrize("response", [
    "Sorry, I can't help with that.",
    "{ this is not json }",
    "[1, 2, 3]",
    "",
])
def test_malformed_response_falls_back(basic_table, fake_generator, response):
    result = analyze(basic_table, generator=fake_generator(response), rng=random.Random(3))
    expected = fallback_analysis(basic_table, rng=random.Random(3))

    assert isinstance(result, AnalysisResult)
    assert result.proxy_probability == expected.proxy_probability
    assert result.insights == expected.insights
    assert len(result.insights) == 4


def test_service_error_falls_back(basic_table, fake_generator):
    gen = fake_generator(error=ConnectionError("quota exceeded"))
    result = analyze(basic_table, generator=gen, rng=random.Random(5))
    assert result.total_students == 3
    assert 1 <= result.flagged_count <= 3
    assert len(result.insights) == 4


def test_timeout_falls_back(basic_table, fake_generator):
    gen = fake_generator(GOOD_RESPONSE, delay=0.5)
    result = analyze(basic_table, generator=gen, rng=random.Random(5), timeout=0.05)
    assert result.proxy_probability != pytest.approx(0.42)
    assert len(result.insights) == 4


def test_fallback_end_to_end_with_seeded_random(basic_table):
    seed = 2024
    result = analyze(basic_table, rng=random.Random(seed))

    # повторяем ту же последовательность обращений к генератору
    r = random.Random(seed)
    n = min(r.randint(1, 3), 3)
    rows = list(basic_table.rows)
    r.shuffle(rows)
    expected = []
    for row in rows[:n]:
        reason = r.choice(FLAG_REASONS)
        conf = r.random() * 0.4 + 0.5
        expected.append((row["Roll"], row["Name"], row["Bench"], reason, conf))
    p = min(n * 0.15 + r.random() * 0.1, 0.8)

    assert result.total_students == 3
    assert result.present_count == 2
    assert result.absent_count == 1
    assert result.flagged_count == n
    assert [(f.roll_number, f.student_name, f.bench_id, f.reason) for f in result.flagged_entries] == \
        [e[:4] for e in expected]
    assert [f.confidence for f in result.flagged_entries] == pytest.approx([e[4] for e in expected])
    assert result.proxy_probability == pytest.approx(p)
    assert derive_status(result.proxy_probability) == derive_status(p)


def test_fallback_insights(basic_table, rng):
    result = fallback_analysis(basic_table, rng=rng)
    assert len(result.insights) == 4
    assert result.insights[0] == "Analyzed 3 students with 2 marked as present (67% attendance rate)."
    assert result.insights[1] == (
        f"Detected {result.flagged_count} potentially suspicious entries based on pattern analysis."
    )
    assert result.insights[2] == "Cross-referenced bench positions with historical seating data."
    assert result.insights[3] == "Attendance rate within normal parameters."


def test_fallback_high_attendance_warning():
    rows = [{"Name": f"S{i}", "Roll": str(i), "Present": "yes"} for i in range(20)]
    table = AttendanceTable.from_records(["Name", "Roll", "Present"], rows)
    result = fallback_analysis(table, rng=random.Random(0))
    assert result.insights[0] == "Analyzed 20 students with 20 marked as present (100% attendance rate)."
    assert result.insights[3] == "Unusually high attendance rate detected - recommend manual verification."


def test_fallback_no_flags_branch(basic_table):
    tuning = FallbackTuning(min_flags=0, max_flags=0)
    result = fallback_analysis(basic_table, rng=random.Random(9), tuning=tuning)
    assert result.flagged_count == 0
    assert 0.0 <= result.proxy_probability < 0.15
    assert result.insights[1] == "No significant anomalies detected in the attendance patterns."


def test_fallback_defaults_for_missing_columns():
    table = AttendanceTable.from_records(["Comment"], [{"Comment": "x"}, {"Comment": "y"}])
    drawn = min(random.Random(1).randint(1, 3), 2)
    result = fallback_analysis(table, rng=random.Random(1))
    assert result.present_count == 0
    # записи без номера не сливаются
    assert result.flagged_count == drawn == len(result.flagged_entries)
    for entry in result.flagged_entries:
        assert (entry.student_name, entry.roll_number, entry.bench_id) == ("Unknown", "N/A", "N/A")


def test_fallback_without_roll_column_keeps_every_flag():
    rows = [{"Name": f"S{i}", "Present": "yes" if i % 2 else "no"} for i in range(5)]
    table = AttendanceTable.from_records(["Name", "Present"], rows)
    drawn = min(random.Random(0).randint(1, 3), 5)

    result = analyze(table, rng=random.Random(0))

    assert result.flagged_count == drawn
    assert [f.roll_number for f in result.flagged_entries] == ["N/A"] * drawn
    assert result.proxy_probability >= drawn * 0.15
    assert result.insights[1] == f"Detected {drawn} potentially suspicious entries based on pattern analysis."
    if drawn >= 2:
        assert derive_status(result.proxy_probability) != SessionStatus.CLEAN


def test_fallback_score_counts_drawn_rows_with_repeated_rolls():
    rows = [{"Name": n, "Roll": "7", "Present": "yes"} for n in ("A", "B", "C")]
    table = AttendanceTable.from_records(["Name", "Roll", "Present"], rows)
    tuning = FallbackTuning(min_flags=3, max_flags=3)

    result = fallback_analysis(table, rng=random.Random(4), tuning=tuning)

    assert result.flagged_count == 1
    assert 0.449 <= result.proxy_probability < 0.55
    assert result.insights[1] == "Detected 3 potentially suspicious entries based on pattern analysis."
    out = result.to_wire(derive_status(result.proxy_probability))
    assert out["flaggedCount"] == len(out["flaggedEntries"])


def test_delegated_entries_without_roll_are_kept(basic_table, fake_generator):
    payload = {
        "proxyProbability": 0.3,
        "insights": [],
        "flaggedEntries": [
            {"studentName": "Asha", "reason": "seat", "confidence": 0.7},
            {"studentName": "Ravi", "rollNumber": "", "reason": "seat", "confidence": 0.6},
        ],
    }
    result = analyze(basic_table, generator=fake_generator(json.dumps(payload)))
    assert result.flagged_count == 2
    assert [f.student_name for f in result.flagged_entries] == ["Asha", "Ravi"]


@pytest.mark.parametrize("seed", range(25))
def test_fallback_invariants_hold(basic_table, seed):
    result = analyze(basic_table, rng=random.Random(seed))
    assert 0.0 <= result.proxy_probability <= 0.8
    assert result.flagged_count == len(result.flagged_entries)
    assert 1 <= result.flagged_count <= 3
    assert all(0.5 <= f.confidence < 0.9 for f in result.flagged_entries)
    assert all(f.reason in FLAG_REASONS for f in result.flagged_entries)
    assert result.present_count + result.absent_count == result.total_students


def test_fallback_is_reproducible(basic_table):
    a = fallback_analysis(basic_table, rng=random.Random(77))
    b = fallback_analysis(basic_table, rng=random.Random(77))
    assert a.to_dict() == b.to_dict()


def test_ip_and_seating_analysis(ip_table):
    ip = ip_analysis(ip_table)
    assert ip.unique_ips == 2
    assert ip.duplicate_ips == 1
    assert ip.suspicious_ips == ["10.0.0.5"]

    seats = seating_analysis(ip_table)
    assert seats.clusters == 2
    assert seats.anomalies == 1


def test_ip_and_seating_attached_only_when_columns_exist(basic_table, ip_table):
    plain = analyze(basic_table, rng=random.Random(0))
    assert plain.ip_analysis is None
    assert plain.seating_analysis is not None

    rich = analyze(ip_table, rng=random.Random(0))
    assert rich.ip_analysis.duplicate_ips == 1
    assert rich.present_count == 3


def test_wire_shape(basic_table):
    result = analyze(basic_table, rng=random.Random(0))
    out = result.to_wire(derive_status(result.proxy_probability))
    for key in ["totalStudents", "presentCount", "absentCount", "flaggedCount", "proxyProbability",
                "insights", "flaggedEntries", "status"]:
        assert key in out
    assert out["flaggedCount"] == len(out["flaggedEntries"])
    assert set(out["flaggedEntries"][0]) >= {"studentName", "rollNumber", "benchId", "reason", "confidence"}
    assert "ipAnalysis" not in out


def test_result_model_clamps_out_of_range_values():
    r = AnalysisResult(proxy_probability=-3, flagged_entries=[FlaggedEntry(roll_number="1", confidence=4)])
    assert r.proxy_probability == 0.0
    assert r.flagged_entries[0].confidence == 1.0


class _StuckGenerator:
    def __init__(self):
        self.release = threading.Event()

    def generate(self, prompt: str) -> str:
        self.release.wait(5)
        return "{}"


def test_timed_out_call_runs_on_daemon_thread(basic_table):
    gen = _StuckGenerator()
    try:
        result = analyze(basic_table, generator=gen, rng=random.Random(5), timeout=0.05)
        assert len(result.insights) == 4
        workers = [t for t in threading.enumerate() if t.name == "proxyscan-generator"]
        assert workers
        assert all(t.daemon for t in workers)
    finally:
        gen.release.set()


def test_generator_error_is_reraised_through_timeout_guard(basic_table, fake_generator):
    gen = fake_generator(error=RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        analysis._call_with_timeout(gen, "prompt", timeout=1.0)


class _FakeModels:
    def __init__(self):
        self.calls = []

    def generate_content(self, model, contents):
        self.calls.append((model, contents))
        return type("Resp", (), {"text": '{"proxyProbability": 0.1}'})()


class _FakeClient:
    instances = []

    def __init__(self, api_key, http_options=None):
        self.api_key = api_key
        self.http_options = http_options
        self.models = _FakeModels()
        _FakeClient.instances.append(self)


def test_gemini_generator_uses_client(monkeypatch):
    monkeypatch.setattr(analysis.genai, "Client", _FakeClient)
    gen = GeminiTextGenerator("key-1", model="gemini-test", timeout=2.5)

    assert gen.generate("hello") == '{"proxyProbability": 0.1}'
    client = _FakeClient.instances[-1]
    assert client.api_key == "key-1"
    assert client.http_options.timeout == 2500
    assert client.models.calls == [("gemini-test", "hello")]


def test_default_generator_needs_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    assert default_generator() is None

    monkeypatch.setattr(analysis.genai, "Client", _FakeClient)
    monkeypatch.setenv("GEMINI_API_KEY", "key-2")
    monkeypatch.setenv("PROXYSCAN_LLM_MODEL", "gemini-other")
    gen = default_generator()
    assert isinstance(gen, GeminiTextGenerator)
    assert gen.model_name == "gemini-other"
