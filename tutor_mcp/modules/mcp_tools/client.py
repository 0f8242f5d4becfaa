"""Typed client for the tutoring capability server.

``TutorMCPClient`` is the only surface application code needs. Each method
makes sure a session is live, calls one remote tool and post-processes the
reply. Failures are logged here and turned into safe defaults (``None``,
empty lists, or a "Search failed" envelope); nothing below this layer leaks
out as an exception.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import httpx

from tutor_mcp.core.log_sanitizer import preview_for_logging, sanitize_for_logging
from tutor_mcp.core.metrics_logger import log_metric
from tutor_mcp.domain.errors import DomainError
from tutor_mcp.domain.sessions.models import Session
from tutor_mcp.domain.tools.models import ToolCallResult
from tutor_mcp.modules.config import AppSettings, config_manager
from tutor_mcp.modules.parsing.grade_analysis import calculate_grade_analysis, find_materials_for_review
from tutor_mcp.modules.parsing.question_locator import locate_question
from tutor_mcp.modules.parsing.text_parser import (
    NO_RESULTS_MARKER,
    ResponseTextParser,
    parse_grades_from_text,
    parse_lessons_from_text,
    parse_overdue_from_text,
)
from tutor_mcp.version import VERSION

from .dispatcher import RequestDispatcher
from .negotiator import SessionNegotiator
from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

SEARCH_TOOL = "search_database"
MATERIAL_TOOL = "get_material_content"


def normalize_tool_result(raw: Any) -> ToolCallResult:
    """Convert a ``tools/call`` result into a ToolCallResult.

    Order: ``isError`` wins, then ``structuredContent``, then the text parts
    joined with newlines (JSON when they parse to an object or array).
    """
    if raw is None:
        return ToolCallResult.of_error("Tool returned no result")
    if not isinstance(raw, dict):
        return ToolCallResult.of_json(raw)

    text_parts = [
        part.get("text", "")
        for part in raw.get("content") or []
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    text = "\n".join(text_parts)

    if raw.get("isError"):
        return ToolCallResult.of_error(text or "Tool reported an error")

    structured = raw.get("structuredContent")
    if structured is not None:
        return ToolCallResult.of_json(structured)

    if "content" not in raw:
        # Not an MCP content envelope; treat the object itself as the payload
        return ToolCallResult.of_json(raw)

    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        try:
            value = json.loads(stripped)
        except ValueError:
            value = None
        if isinstance(value, (dict, list)):
            return ToolCallResult.of_json(value)
    return ToolCallResult.of_text(text)


def _as_dict(item: Any) -> Dict[str, Any]:
    if isinstance(item, Mapping):
        return dict(item)
    to_dict = getattr(item, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {"title": str(item)}


def _result_items(envelope: Dict[str, Any], *keys: str) -> List[Any]:
    results = envelope.get("results") or {}
    if not isinstance(results, Mapping):
        return []
    items: List[Any] = []
    for key in keys:
        value = results.get(key)
        if isinstance(value, list):
            items.extend(value)
    return items


def _envelope_text(envelope: Dict[str, Any]) -> str:
    """Reply text of a search envelope; JSON envelopes may carry none."""
    for key in ("raw_response", "full_context_text"):
        value = envelope.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _parse_due(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def _current_focus(overdue: List[Any], lessons: List[Any]) -> Optional[Any]:
    """Most urgent item: the first overdue assignment, else the lesson due soonest."""
    if overdue:
        return overdue[0]
    if not lessons:
        return None
    dated = []
    for i, lesson in enumerate(lessons):
        due = _parse_due(getattr(lesson, "due_date", None))
        if due is not None:
            dated.append((due, i))
    if dated:
        return lessons[min(dated)[1]]
    return lessons[0]


class TutorMCPClient:
    """Remote tool-calling client for one capability server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        settings: Optional[AppSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        parser: Optional[ResponseTextParser] = None,
    ):
        self.settings = settings or config_manager.app_settings
        self.base_url = (base_url or self.settings.mcp_server_url).rstrip("/")
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.mcp_call_timeout)
        self.parser = parser or ResponseTextParser()

        self.negotiator = SessionNegotiator(
            self.http_client,
            handshake_timeout=self.settings.mcp_handshake_timeout,
            sse_path=self.settings.mcp_sse_path,
        )
        self.supervisor = ConnectionSupervisor(
            self.negotiator,
            self.base_url,
            max_attempts=self.settings.mcp_connect_max_attempts,
            retry_delay=self.settings.mcp_connect_retry_delay,
        )
        self.dispatcher = RequestDispatcher(
            self.supervisor,
            self.http_client,
            call_timeout=self.settings.mcp_call_timeout,
            session_retry_delay=self.settings.mcp_session_retry_delay,
            protocol_version=self.settings.mcp_protocol_version,
            client_info={"name": self.settings.mcp_client_name, "version": VERSION},
        )
        self.negotiator.on_message = self.dispatcher.resolve
        self.supervisor.initializer = self.dispatcher.initialize
        self.supervisor.on_session_lost = self.dispatcher.abandon_session

    async def __aenter__(self) -> "TutorMCPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def is_connected(self) -> bool:
        return self.supervisor.is_ready

    @property
    def session(self) -> Optional[Session]:
        return self.supervisor.session

    async def connect(self) -> Session:
        """Ensure a live session; raises ConnectionExhausted when the server is unreachable."""
        return await self.supervisor.ensure_connected()

    async def disconnect(self) -> None:
        await self.supervisor.disconnect()

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client if this instance created it."""
        await self.disconnect()
        if self._owns_http_client:
            await self.http_client.aclose()

    # === CORE TOOL CALLS ===

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        *,
        idempotent: bool = False,
        learner_id: Optional[str] = None,
    ) -> ToolCallResult:
        """
        Call a remote tool; dispatch failures come back as an ERROR result.

        Only calls marked ``idempotent`` are re-sent after the session expires.
        """
        started = time.monotonic()
        log_extra = {"mcp_method": "tools/call", "mcp_tool": name}
        try:
            raw = await self.dispatcher.send(
                "tools/call", {"name": name, "arguments": arguments}, idempotent=idempotent
            )
        except DomainError as e:
            logger.error(
                f"Tool call {sanitize_for_logging(name)} failed: {type(e).__name__}: {sanitize_for_logging(e.message)}",
                extra=log_extra,
            )
            result = ToolCallResult.of_error(e.message)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error calling tool {sanitize_for_logging(name)}: {e}", exc_info=True, extra=log_extra)
            result = ToolCallResult.of_error(str(e) or type(e).__name__)
        else:
            result = normalize_tool_result(raw)

        log_metric(
            "tool_call",
            learner_id,
            tool_name=name,
            kind=result.kind.value,
            success=not result.is_error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    async def list_tools(self) -> List[Dict[str, Any]]:
        """Tools advertised by the server (``tools/list``); empty on failure."""
        try:
            result = await self.dispatcher.send("tools/list", {}, idempotent=True)
        except DomainError as e:
            logger.error(f"tools/list failed: {type(e).__name__}: {sanitize_for_logging(e.message)}")
            return []
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error listing tools: {e}", exc_info=True)
            return []
        tools = result.get("tools") if isinstance(result, dict) else None
        return list(tools) if isinstance(tools, list) else []

    def _text_envelope(self, text: str, category: str) -> Dict[str, Any]:
        return {
            "results": self.parser.parse(text, category),
            "summary": "No results found" if NO_RESULTS_MARKER in text else "Search completed",
            "raw_response": text,
            "full_context_text": text,
        }

    async def search(self, child_id: str, query: str, category: str = "all") -> Dict[str, Any]:
        """Search a learner's data; text replies are parsed into typed records."""
        logger.info(
            f"Searching ({sanitize_for_logging(category)}) for learner {sanitize_for_logging(child_id)}: "
            f"{preview_for_logging(query)}"
        )
        result = await self.call_tool(
            SEARCH_TOOL,
            {"child_id": child_id, "query": query, "search_type": category},
            idempotent=True,
            learner_id=child_id,
        )

        if result.is_error:
            return {"results": {}, "summary": "Search failed", "error": result.error}

        if result.is_text:
            return self._text_envelope(result.value, category)

        value = result.value
        if isinstance(value, dict):
            # Some servers wrap the formatted text as {"result": "..."}
            if isinstance(value.get("result"), str):
                return self._text_envelope(value["result"], category)
            envelope = dict(value)
            envelope.setdefault("results", {})
            envelope.setdefault("summary", "Search completed")
            return envelope
        return {"results": {"items": value}, "summary": "Search completed"}

    async def get_material_content(self, child_id: str, identifier: str) -> Optional[Dict[str, Any]]:
        """Full material (questions, learning objectives) or None."""
        result = await self.call_tool(
            MATERIAL_TOOL,
            {"child_id": child_id, "material_identifier": identifier},
            idempotent=True,
            learner_id=child_id,
        )
        if not result.is_json or not isinstance(result.value, dict):
            reason = result.error if result.is_error else f"unexpected {result.kind.value} reply"
            logger.info(f"Material {preview_for_logging(identifier)} unavailable: {sanitize_for_logging(reason)}")
            return None
        if result.value.get("error"):
            logger.info(
                f"Material {preview_for_logging(identifier)} unavailable: {sanitize_for_logging(result.value['error'])}"
            )
            return None
        return result.value

    async def get_specific_question(
        self, child_id: str, identifier: str, number: int
    ) -> Optional[Dict[str, Any]]:
        material_data = await self.get_material_content(child_id, identifier)
        if not material_data or not material_data.get("questions"):
            logger.info(f"No questions found for material {preview_for_logging(identifier)}")
            return None

        try:
            located = locate_question(material_data, number)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error locating question {number} in {preview_for_logging(identifier)}: {e}", exc_info=True)
            return None
        if located is None:
            logger.info(f"Question {number} not found in {preview_for_logging(identifier)}")
        return located

    # === MATERIAL LOOKUPS ===

    async def find_material(self, child_id: str, name: str) -> Optional[Dict[str, Any]]:
        """First assignment matching ``name``, with full content attached when available."""
        envelope = await self.search(child_id, name, "assignments")
        items = _result_items(envelope, "assignments") or _result_items(envelope, "matching_assignments")
        if not items:
            logger.info(f"Material not found: {preview_for_logging(name)}")
            return None

        try:
            material = _as_dict(items[0])
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error reading material {preview_for_logging(name)}: {e}", exc_info=True)
            return None
        if material.get("has_content"):
            full_content = await self.get_material_content(child_id, str(material.get("title") or name))
            if full_content:
                return {**material, "full_content": full_content}
        return material

    async def get_material_details_with_child(self, child_id: str, material_id: str) -> Optional[Dict[str, Any]]:
        material_data = await self.get_material_content(child_id, material_id)
        if material_data:
            return material_data

        envelope = await self.search(child_id, material_id, "all")
        for item in _result_items(envelope, "assignments", "matching_assignments"):
            candidate = _as_dict(item)
            if candidate.get("id") == material_id:
                full_content = await self.get_material_content(child_id, str(candidate.get("title") or material_id))
                return full_content or candidate
        return None

    async def check_material_access(self, child_id: str, material_id: str) -> bool:
        return bool(await self.get_material_details_with_child(child_id, material_id))

    async def get_current_materials(self, child_id: str) -> List[Any]:
        envelope = await self.search(child_id, "", "incomplete_assignments")
        return _result_items(envelope, "assignments")

    async def get_upcoming_assignments(self, child_id: str, days_ahead: int = 7) -> List[Any]:
        """Incomplete assignments, minus those with an ISO due date beyond ``days_ahead``."""
        cutoff = datetime.now() + timedelta(days=days_ahead)
        upcoming = []
        for item in await self.get_current_materials(child_id):
            due = _parse_due(_as_dict(item).get("due_date"))
            if due is None or due <= cutoff:
                upcoming.append(item)
        return upcoming

    async def search_materials(self, child_id: str, query: str) -> List[Any]:
        envelope = await self.search(child_id, query, "all")
        return _result_items(envelope, "matching_assignments") or _result_items(envelope, "assignments")

    async def get_child_materials(self, child_id: str) -> List[Any]:
        envelope = await self.search(child_id, "", "all")
        return _result_items(envelope, "assignments", "matching_assignments")

    # === LEARNING CONTEXT ===

    async def get_learning_context(self, child_id: str) -> Dict[str, Any]:
        """Lessons, overdue work and recent grades scanned from the learner's full summary."""
        envelope = await self.search(child_id, "", "all")
        text = _envelope_text(envelope)

        try:
            lessons = parse_lessons_from_text(text)
            overdue = parse_overdue_from_text(text)
            recent_work = parse_grades_from_text(text)
            current_focus = _current_focus(overdue, lessons)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error scanning learning context for {sanitize_for_logging(child_id)}: {e}", exc_info=True)
            lessons, overdue, recent_work, current_focus = [], [], [], None
        context: Dict[str, Any] = {
            "full_context_text": text,
            "child_subjects": _result_items(envelope, "subjects"),
            "lessons": lessons,
            "overdue": overdue,
            "recent_work": recent_work,
            "current_focus": current_focus,
        }
        if envelope.get("error"):
            context["error"] = envelope["error"]
            context["full_context_text"] = f"Error loading educational data: {envelope['error']}"

        logger.debug(
            f"Learning context for {sanitize_for_logging(child_id)}: {len(lessons)} lessons, "
            f"{len(overdue)} overdue, {len(context['recent_work'])} grades"
        )
        return context

    async def get_enhanced_learning_context(self, child_id: str) -> Dict[str, Any]:
        """Learning context plus a grade analysis from a dedicated grades search."""
        basic, grades_envelope = await asyncio.gather(
            self.get_learning_context(child_id),
            self.search(child_id, "grades scores percent", "grades"),
        )

        text = basic.get("full_context_text") or ""
        grades_text = _envelope_text(grades_envelope)
        if grades_text and "No grade data" not in grades_text:
            text = f"{text}\n\n{grades_text}"

        grades = _result_items(grades_envelope, "grades")
        try:
            analysis = calculate_grade_analysis(grades)
            review = find_materials_for_review(grades)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error analysing grades for {sanitize_for_logging(child_id)}: {e}", exc_info=True)
            analysis, review = calculate_grade_analysis([]), []
        context = {
            **basic,
            "full_context_text": text.strip() or "No educational data available.",
            "grade_analysis": analysis,
            "materials_for_review": review,
            "has_low_grades": bool(review),
            "needs_review": bool(review),
            "average_grade": analysis["overall"]["average"],
            "recent_grade_count": len(grades),
        }
        if grades_envelope.get("error"):
            context["grades_error"] = grades_envelope["error"]
        return context
