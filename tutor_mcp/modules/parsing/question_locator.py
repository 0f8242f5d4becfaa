"""Locate a numbered question inside a fetched material."""

import re
from typing import Any, Dict, List, Optional, Sequence


INSTRUCTION_VERBS = ("solve", "write", "shade", "round", "draw")

_NUMBERED_RE = re.compile(r"^\d+\.")
_NUMBER_PREFIX_RE = re.compile(r"^\d+\.\s*")


def find_instruction(questions: Sequence[str], index: int) -> Optional[str]:
    """Nearest preceding non-numbered entry that reads like an instruction."""
    for i in range(index - 1, -1, -1):
        candidate = questions[i].strip()
        if _NUMBERED_RE.match(candidate):
            continue
        lowered = candidate.lower()
        if any(verb in lowered for verb in INSTRUCTION_VERBS):
            return candidate
    return None


def locate_question(material_data: Dict[str, Any], number: int) -> Optional[Dict[str, Any]]:
    """Build the question payload for ``number``, or None when it is not in the list."""
    questions: List[str] = [str(q) for q in material_data.get("questions") or []]
    pattern = re.compile(rf"^{re.escape(str(number))}\.\s*")
    index = next((i for i, q in enumerate(questions) if pattern.match(q.strip())), -1)
    if index == -1:
        return None

    text = questions[index]
    material = material_data.get("material") or {}
    return {
        "material": material,
        "question": {
            "number": number,
            "text": text,
            "clean_text": _NUMBER_PREFIX_RE.sub("", text.strip()).strip(),
            "instruction": find_instruction(questions, index),
            "index": index,
            "total_questions": len(questions),
        },
        "context": {
            "learning_objectives": material_data.get("learning_objectives"),
            "content_type": material.get("content_type"),
            "subject": material.get("subject"),
        },
    }
