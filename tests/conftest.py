import random
import time
import pytest
from proxyscan.models import AttendanceTable


class FakeGenerator:
    """TextGenerator для тестов: отдаёт заданный текст или бросает исключение."""

    def __init__(self, response: str = "", error: Exception | None = None, delay: float = 0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def basic_table() -> AttendanceTable:
    return AttendanceTable.from_records(
        ["Name", "Roll", "Bench", "Present"],
        [
            {"Name": "Asha", "Roll": "101", "Bench": "CSE-A-R1C1", "Present": "yes"},
            {"Name": "Ravi", "Roll": "102", "Bench": "CSE-A-R1C2", "Present": "1"},
            {"Name": "Meera", "Roll": "103", "Bench": "CSE-A-R2C1", "Present": "no"},
        ],
    )


@pytest.fixture
def ip_table() -> AttendanceTable:
    return AttendanceTable.from_records(
        ["Student Name", "Roll No", "Bench ID", "IP Address", "Attendance"],
        [
            {"Student Name": "A", "Roll No": "1", "Bench ID": "ECE-B-R1C1", "IP Address": "10.0.0.5", "Attendance": "P"},
            {"Student Name": "B", "Roll No": "2", "Bench ID": "ECE-B-R1C2", "IP Address": "10.0.0.5", "Attendance": "P"},
            {"Student Name": "C", "Roll No": "3", "Bench ID": "ECE-B-R1C2", "IP Address": "10.0.0.7", "Attendance": "P"},
            {"Student Name": "D", "Roll No": "4", "Bench ID": "ECE-C-R3C1", "IP Address": "", "Attendance": "A"},
        ],
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def fake_generator():
    return FakeGenerator
