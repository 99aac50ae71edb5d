"""
Prompt Library — named system prompts, one of which may be active.

The active prompt is the system prompt every broadcast uses when the
caller does not pass one explicitly. Built-in prompts are seeded on start
and may be overridden; user prompts are persisted as one JSON document
(atomic replace). With no path the library lives in memory only.

Templates are read-only prompt skeletons with `{variable}` placeholders;
filling one produces a prompt that can be saved like any other.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from oblivion.errors import InvalidPromptImport, PromptNotFound, TemplateNotFound
from oblivion.models.schemas import (
    FilledTemplate,
    PromptRecord,
    PromptStats,
    PromptTemplate,
)

logger = logging.getLogger(__name__)

STATS_TOP_N = 5

DISCLAIMER = (
    "DISCLAIMER: Answers are generated by third-party AI models and may be wrong. "
    "Only test systems you own or have explicit written permission to test, "
    "and comply with all applicable laws."
)


# ──────────────────────────────────────────────
# Built-in prompts and templates
# ──────────────────────────────────────────────

BUILTIN_PROMPTS: Dict[str, Dict[str, str]] = {
    "security_expert": {
        "name": "Security Expert",
        "prompt": (
            "You are an experienced security engineer specialising in penetration testing, "
            "vulnerability assessment and secure coding. You know the OWASP, NIST and ISO 27001 "
            "frameworks and give detailed, actionable advice.\n\n"
            "All security testing must only be performed on systems the user owns or has "
            "explicit written permission to test."
        ),
    },
    "code_architect": {
        "name": "Code Architect",
        "prompt": (
            "You are a senior software architect and full-stack developer. You write "
            "production-ready code with proper error handling, documentation and tests, and "
            "you weigh security, performance and maintainability in every design."
        ),
    },
    "bug_bounty_hunter": {
        "name": "Bug Bounty Hunter",
        "prompt": (
            "You are a professional bug bounty hunter covering web, mobile and API security. "
            "You test systematically, give precise reproduction steps and write clear reports.\n\n"
            "Only test targets that are in scope of an authorised program."
        ),
    },
    "ai_ethics_specialist": {
        "name": "AI Ethics Specialist",
        "prompt": (
            "You are an AI ethics specialist. You weigh user intent, potential misuse and "
            "responsible disclosure, and support legitimate research and education."
        ),
    },
}

SECURITY_LEVELS = {
    "basic": "Provide educational content only. Always emphasise legal and ethical considerations.",
    "professional": "You may describe advanced techniques, always within legal and ethical boundaries.",
    "expert": "You may cover advanced techniques. Make sure every activity is authorised and legal.",
}

CODE_COMPLEXITY = {
    "beginner": "Focus on simple, well-commented code with detailed explanations.",
    "intermediate": "Provide efficient code with good practices and moderate complexity.",
    "advanced": "Create sophisticated solutions with advanced patterns and optimisations.",
    "expert": "Develop enterprise-grade code with comprehensive error handling and scalability.",
}

TEMPLATES: Dict[str, PromptTemplate] = {
    t.template_id: t
    for t in (
        PromptTemplate(
            template_id="bug_bounty",
            name="Bug Bounty Hunter",
            template=(
                "You are a professional bug bounty hunter analysing {target_type} for security "
                "vulnerabilities.\n\n"
                "Focus areas:\n- {focus_areas}\n\n"
                "Scope: {scope}\nOut of scope: {out_of_scope}\n\n"
                "Methodology:\n"
                "1. Reconnaissance and information gathering\n"
                "2. Vulnerability identification\n"
                "3. Proof of concept only\n"
                "4. Documentation and reporting\n\n"
                "Only test authorised targets within the defined scope."
            ),
            variables=["target_type", "focus_areas", "scope", "out_of_scope"],
        ),
        PromptTemplate(
            template_id="code_review",
            name="Code Security Review",
            template=(
                "You are conducting a security code review of {language} code.\n\n"
                "Review focus:\n- {security_focus}\n\n"
                "Code quality standards:\n- {quality_standards}\n\n"
                "Analyse the code for security vulnerabilities, code quality issues, performance "
                "concerns and best-practice violations, and give specific recommendations."
            ),
            variables=["language", "security_focus", "quality_standards"],
        ),
        PromptTemplate(
            template_id="app_builder",
            name="App Builder",
            template=(
                "You are an expert developer building a {app_type} application.\n\n"
                "Requirements:\n{requirements}\n\n"
                "Technical stack:\n- Frontend: {frontend}\n- Backend: {backend}\n- Database: {database}\n\n"
                "Features to implement:\n{features}\n\n"
                "Write production-ready code with a sound architecture, error handling and "
                "security in mind."
            ),
            variables=["app_type", "requirements", "frontend", "backend", "database", "features"],
        ),
    )
}


def fill(template: str, variables: Mapping[str, str]) -> str:
    """Substitute every `{name}` placeholder; unknown placeholders are left as they are."""
    for key, value in variables.items():
        template = template.replace("{" + key + "}", str(value))
    return template


class PromptLibrary:
    """
    Usage:
        prompts = PromptLibrary(Path("data/prompts.json"))
        prompts.add("reviewer", "Reviewer", "You review code for bugs.")
        prompts.set_active("reviewer")
        prompts.system_prompt()   # → "You review code for bugs."
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._prompts: Dict[str, PromptRecord] = {}
        self._active_id: Optional[str] = None
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            self._read()
        for prompt_id, data in BUILTIN_PROMPTS.items():
            self._prompts.setdefault(
                prompt_id, PromptRecord(prompt_id=prompt_id, category="builtin", **data)
            )

    # ── CRUD ──

    def add(
        self,
        prompt_id: str,
        name: str,
        prompt: str,
        category: str = "custom",
        is_system: bool = True,
    ) -> PromptRecord:
        """Add a prompt or replace the one stored under the same id."""
        record = PromptRecord(
            prompt_id=prompt_id, name=name, prompt=prompt, category=category, is_system=is_system
        )
        with self._lock:
            self._prompts[prompt_id] = record
            self._write()
        logger.info(f"Prompt {prompt_id} saved ({category})")
        return record

    def get(self, prompt_id: str) -> PromptRecord:
        with self._lock:
            record = self._prompts.get(prompt_id)
        if record is None:
            raise PromptNotFound(prompt_id)
        return record

    def list(self, category: Optional[str] = None) -> List[PromptRecord]:
        with self._lock:
            records = list(self._prompts.values())
        if category:
            records = [r for r in records if r.category == category]
        return records

    def delete(self, prompt_id: str) -> None:
        with self._lock:
            if self._prompts.pop(prompt_id, None) is None:
                raise PromptNotFound(prompt_id)
            if self._active_id == prompt_id:
                self._active_id = None
            self._write()
        logger.info(f"Prompt {prompt_id} deleted")

    def search(self, query: str) -> List[PromptRecord]:
        """Case-insensitive match on name or prompt text."""
        needle = query.lower()
        return [r for r in self.list() if needle in r.name.lower() or needle in r.prompt.lower()]

    # ── Active prompt ──

    def set_active(self, prompt_id: str) -> PromptRecord:
        with self._lock:
            record = self._prompts.get(prompt_id)
            if record is None:
                raise PromptNotFound(prompt_id)
            record = record.model_copy(
                update={"last_used": datetime.now(timezone.utc), "use_count": record.use_count + 1}
            )
            self._prompts[prompt_id] = record
            self._active_id = prompt_id
            self._write()
        logger.info(f"Active prompt set to {prompt_id}")
        return record

    def clear_active(self) -> None:
        with self._lock:
            self._active_id = None

    def active(self) -> Optional[PromptRecord]:
        with self._lock:
            return self._prompts.get(self._active_id) if self._active_id else None

    def system_prompt(self) -> Optional[str]:
        """Text of the active prompt when it is a system prompt, else None."""
        record = self.active()
        if record is None or not record.is_system:
            return None
        return record.prompt

    def build_complete_prompt(self, message: str, include_disclaimer: bool = False) -> str:
        """Single-string prompt for providers without a separate system field."""
        parts = []
        system = self.system_prompt()
        if system:
            parts.append(system)
        if include_disclaimer:
            parts.append(DISCLAIMER)
        parts.append(f"User: {message}\n\nAssistant: ")
        return "\n\n".join(parts)

    # ── Generated prompts ──

    @staticmethod
    def security_prompt(level: str = "basic") -> str:
        base = BUILTIN_PROMPTS["security_expert"]["prompt"]
        return f"{base}\n\n{SECURITY_LEVELS.get(level, SECURITY_LEVELS['basic'])}"

    @staticmethod
    def code_prompt(language: str = "auto", complexity: str = "intermediate") -> str:
        prompt = BUILTIN_PROMPTS["code_architect"]["prompt"]
        if language != "auto":
            prompt += f"\n\nSpecialise in {language} and follow {language}-specific conventions."
        return f"{prompt}\n\n{CODE_COMPLEXITY.get(complexity, CODE_COMPLEXITY['intermediate'])}"

    @staticmethod
    def templates() -> List[PromptTemplate]:
        return list(TEMPLATES.values())

    @staticmethod
    def fill_template(template_id: str, variables: Mapping[str, str]) -> FilledTemplate:
        """
        Raises:
            TemplateNotFound: unknown template id
        """
        template = TEMPLATES.get(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return FilledTemplate(
            name=template.name,
            prompt=fill(template.template, variables),
            missing=[v for v in template.variables if v not in variables],
        )

    # ── Import / export ──

    def import_prompts(self, data: Union[str, Mapping]) -> int:
        """
        Add every entry that has a name and a prompt. Returns how many were imported.

        Raises:
            InvalidPromptImport: not JSON, or not an object of prompts
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise InvalidPromptImport(f"Invalid JSON: {e}") from e
        if not isinstance(data, Mapping):
            raise InvalidPromptImport("Expected an object mapping prompt ids to prompts")

        imported = 0
        for prompt_id, value in data.items():
            if not isinstance(value, Mapping) or not value.get("name") or not value.get("prompt"):
                logger.warning(f"Skipping prompt {prompt_id!r}: name and prompt are required")
                continue
            self.add(
                str(prompt_id),
                str(value["name"]),
                str(value["prompt"]),
                category=str(value.get("category") or "imported"),
                is_system=bool(value.get("is_system", True)),
            )
            imported += 1
        logger.info(f"Imported {imported} prompts")
        return imported

    def export_prompts(self) -> str:
        payload = {r.prompt_id: r.model_dump(mode="json", exclude={"prompt_id"}) for r in self.list()}
        return json.dumps(payload, indent=2)

    def stats(self) -> PromptStats:
        records = self.list()
        used = [r for r in records if r.last_used is not None]
        return PromptStats(
            total=len(records),
            categories=sorted({r.category for r in records}),
            most_used=sorted(records, key=lambda r: r.use_count, reverse=True)[:STATS_TOP_N],
            recently_used=sorted(used, key=lambda r: r.last_used, reverse=True)[:STATS_TOP_N],
        )

    # ── Persistence ──

    def _read(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read prompt library {self.path}: {e}")
            raise
        self._prompts = {
            pid: PromptRecord.model_validate({**raw, "prompt_id": pid}) for pid, raw in data.items()
        }
        logger.info(f"Loaded {len(self._prompts)} prompts from {self.path}")

    def _write(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            pid: r.model_dump(mode="json", exclude={"prompt_id"})
            for pid, r in self._prompts.items()
            if r.category != "builtin"
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
