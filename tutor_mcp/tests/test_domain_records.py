"""Tests for the learner data records and tool/session models."""

import asyncio
import dataclasses

import pytest

from tutor_mcp.domain.records.models import Assignment, Grade, Lesson, StudyMaterial, Worksheet
from tutor_mcp.domain.sessions.models import PendingRequest, Session, SessionState
from tutor_mcp.domain.tools.models import ToolCallResult, ToolResultKind


class TestRecords:
    @pytest.mark.parametrize("cls", [Assignment, Grade, Lesson, Worksheet, StudyMaterial])
    def test_title_is_required(self, cls):
        with pytest.raises(ValueError):
            cls(title="  ")

    def test_records_are_immutable(self):
        assignment = Assignment(title="Map Skills")
        with pytest.raises(dataclasses.FrozenInstanceError):
            assignment.title = "Other"

    def test_to_dict_omits_absent_fields(self):
        assert Grade(title="Quiz", grade_value=8, grade_max_value=10).to_dict() == {
            "title": "Quiz",
            "grade_value": 8,
            "grade_max_value": 10,
        }

    def test_lesson_lists_become_lists(self):
        lesson = Lesson(title="Fractions", objectives=("Compare", "Order"))
        assert lesson.to_dict() == {"title": "Fractions", "objectives": ["Compare", "Order"]}


class TestSession:
    def test_session_id_from_endpoint(self):
        assert Session.session_id_from_endpoint("/messages?sessionId=abc-123") == "abc-123"
        assert Session.session_id_from_endpoint("http://h/messages?x=1&sessionId=z") == "z"
        assert Session.session_id_from_endpoint("/messages") is None
        assert Session.session_id_from_endpoint("/messages?sessionId=") is None

    def test_ready_only_in_ready_state(self):
        session = Session(session_id="s", command_endpoint="http://h/messages?sessionId=s")
        assert session.state is SessionState.NEGOTIATING
        assert not session.is_ready
        session.state = SessionState.READY
        assert session.is_ready

    def test_to_dict(self):
        session = Session(session_id="s", command_endpoint="http://h/messages?sessionId=s")
        data = session.to_dict()
        assert data["session_id"] == "s"
        assert data["state"] == "negotiating"
        assert "channel" not in data


class TestPendingRequest:
    @pytest.mark.asyncio
    async def test_elapsed_ms_is_non_negative(self):
        pending = PendingRequest(id=1, method="tools/list", future=asyncio.get_running_loop().create_future())
        assert pending.elapsed_ms() >= 0
        assert pending.session_id is None


class TestToolCallResult:
    def test_constructors(self):
        assert ToolCallResult.of_json({"a": 1}).kind is ToolResultKind.JSON
        assert ToolCallResult.of_text("hi").is_text
        error = ToolCallResult.of_error("boom")
        assert error.is_error
        assert error.value is None

    def test_to_dict(self):
        assert ToolCallResult.of_text("hi").to_dict() == {"kind": "text", "value": "hi"}
        assert ToolCallResult.of_error("boom").to_dict() == {"kind": "error", "error": "boom"}
