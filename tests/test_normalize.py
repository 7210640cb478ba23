from proxyscan.models import AnalysisResult, AttendanceTable, FlaggedEntry
from proxyscan.normalize import build_entries, count_present, normalize
from proxyscan.values import clean_cell, is_marked_present, parse_presence


def test_strict_present_vocabulary():
    for v in ["yes", "YES", " 1 ", "true", "P"]:
        assert is_marked_present(v) is True
    for v in ["y", "present", "no", "0", "", None, "late"]:
        assert is_marked_present(v) is False


def test_loose_presence_is_tri_state():
    assert parse_presence("Present") is True
    assert parse_presence("y") is True
    assert parse_presence("Absent") is False
    assert parse_presence("a") is False
    assert parse_presence("late") is None
    assert parse_presence(None) is None


def test_clean_cell():
    assert clean_cell("  x ") == "x"
    assert clean_cell("") is None
    assert clean_cell("nan") is None
    assert clean_cell(None) is None


def test_normalize_is_total():
    assert normalize({"Present": "yes"}, "Present") is True
    assert normalize({"Present": "maybe"}, "Present") is False
    assert normalize({"Present": "yes"}, None) is False
    assert normalize({}, "Present") is False


def test_count_present(basic_table):
    assert count_present(basic_table) == 2


def test_build_entries_marks_flagged_by_roll(basic_table):
    result = AnalysisResult(
        total_students=3,
        present_count=2,
        flagged_entries=[FlaggedEntry(student_name="Ravi", roll_number="102", bench_id="CSE-A-R1C2",
                                      reason="Sequential roll number attendance anomaly", confidence=0.7)],
    )
    entries = build_entries(basic_table, result)

    assert [e.roll_number for e in entries] == ["101", "102", "103"]
    assert [e.present for e in entries] == [True, True, False]
    assert [e.flagged for e in entries] == [False, True, False]
    assert entries[1].flag_reason == "Sequential roll number attendance anomaly"
    assert entries[1].confidence == 0.7
    assert entries[0].flag_reason is None
    assert entries[0].bench_id == "CSE-A-R1C1"


def test_build_entries_defaults_without_columns():
    table = AttendanceTable.from_records(["Whatever"], [{"Whatever": "x"}])
    entries = build_entries(table, AnalysisResult())
    assert entries[0].student_name == "Unknown"
    assert entries[0].roll_number == ""
    assert entries[0].bench_id is None
    assert entries[0].present is False
    assert entries[0].flagged is False


def test_build_entries_reads_ip(ip_table):
    entries = build_entries(ip_table, AnalysisResult())
    assert entries[0].ip_address == "10.0.0.5"
    assert entries[3].ip_address is None
