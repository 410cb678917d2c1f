import pytest

from flicker.upstream.models import TaskSnapshot, TaskStatus


class TestTaskStatus:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("PENDING", TaskStatus.PENDING),
            ("THROTTLED", TaskStatus.PENDING),
            ("RUNNING", TaskStatus.RUNNING),
            ("running", TaskStatus.RUNNING),
            ("SUCCEEDED", TaskStatus.SUCCEEDED),
            ("FAILED", TaskStatus.FAILED),
            ("CANCELLED", TaskStatus.FAILED),
        ],
    )
    def test_from_upstream(self, raw, expected):
        assert TaskStatus.from_upstream(raw) is expected

    @pytest.mark.parametrize("raw", [None, "", "DONE"])
    def test_unknown_status(self, raw):
        with pytest.raises(ValueError):
            TaskStatus.from_upstream(raw)

    def test_terminal_states(self):
        assert [s for s in TaskStatus if s.is_terminal] == [TaskStatus.SUCCEEDED, TaskStatus.FAILED]


class TestTaskSnapshot:
    def test_empty_output_entries_are_dropped(self):
        task = TaskSnapshot.from_payload("t1", {"status": "SUCCEEDED", "output": ["", None]})
        assert task.id == "t1"
        assert task.output == []
        assert task.result_url is None

    def test_first_output_is_the_result(self):
        task = TaskSnapshot.from_payload("t1", {"status": "SUCCEEDED", "output": ["https://a", "https://b"]})
        assert task.result_url == "https://a"
