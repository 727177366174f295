"""
Template rendering and storage for outbound messages.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from mailvault.clients.sqlite_store import SQLiteStore
from mailvault.core.errors import NotFoundError, ValidationFailedError
from mailvault.models.mail import MessageTemplate, TemplateCategory

_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _first(person: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = person.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def _full_name(person: Mapping[str, Any]) -> str:
    return _first(person, "name", "full_name").strip()


# Recognised placeholders and how each one is resolved from person data.
PLACEHOLDER_RESOLVERS: Dict[str, Callable[[Mapping[str, Any]], str]] = {
    "name": _full_name,
    "email": lambda person: _first(person, "email", "email_address"),
    "company": lambda person: _first(person, "company", "company_name"),
    "job_title": lambda person: _first(person, "job_title", "company_role", "role"),
    "role": lambda person: _first(person, "role", "company_role", "job_title"),
    "first_name": lambda person: _first(person, "first_name")
    or (_full_name(person).split(" ")[0] if _full_name(person) else ""),
    "last_name": lambda person: _first(person, "last_name")
    or " ".join(_full_name(person).split(" ")[1:]),
}


@dataclass(slots=True)
class RenderedTemplate:
    subject: str
    body_text: str
    body_html: str


def extract_placeholders(*texts: Optional[str]) -> List[str]:
    """Return placeholder names in order of first appearance."""
    seen: List[str] = []
    for text in texts:
        for match in _PLACEHOLDER_PATTERN.finditer(text or ""):
            name = match.group(1)
            if name not in seen:
                seen.append(name)
    return seen


class TemplateRenderer:
    """Substitute ``{{placeholder}}`` tokens with person data.

    Unknown placeholders and placeholders with no value in the person data
    render as an empty string, so no literal ``{{...}}`` survives rendering.
    """

    def render_text(self, text: str, person: Mapping[str, Any]) -> str:
        def _replace(match: "re.Match[str]") -> str:
            resolver = PLACEHOLDER_RESOLVERS.get(match.group(1))
            return resolver(person) if resolver else ""

        return _PLACEHOLDER_PATTERN.sub(_replace, text)

    def render(
        self, template: MessageTemplate, person: Mapping[str, Any]
    ) -> RenderedTemplate:
        return RenderedTemplate(
            subject=self.render_text(template.subject, person),
            body_text=self.render_text(template.body_text or "", person),
            body_html=self.render_text(template.body_html, person),
        )


class TemplateService:
    """Create, look up and retire message templates."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    async def create_template(
        self,
        *,
        name: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        category: TemplateCategory = TemplateCategory.OTHER,
        placeholders: Optional[List[str]] = None,
        owner_id: Optional[str] = None,
    ) -> MessageTemplate:
        if not name.strip() or not subject.strip():
            raise ValidationFailedError("Template name and subject are required.")
        now = datetime.now(timezone.utc)
        template = MessageTemplate(
            id=str(uuid.uuid4()),
            name=name.strip(),
            subject=subject,
            body_html=body_html,
            body_text=body_text,
            category=category,
            placeholders=placeholders
            or extract_placeholders(subject, body_text, body_html),
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        await self._store.insert_template(template)
        return template

    async def get_template(self, template_id: str) -> MessageTemplate:
        template = await self._store.get_template(template_id)
        if template is None or not template.is_active:
            raise NotFoundError(f"Template {template_id} not found.")
        return template

    async def list_templates(self, owner_id: Optional[str] = None) -> List[MessageTemplate]:
        return await self._store.list_templates(owner_id=owner_id)

    async def deactivate_template(self, template_id: str) -> None:
        updated = await self._store.set_template_active(
            template_id=template_id,
            is_active=False,
            updated_at=datetime.now(timezone.utc),
        )
        if not updated:
            raise NotFoundError(f"Template {template_id} not found.")


__all__ = [
    "PLACEHOLDER_RESOLVERS",
    "RenderedTemplate",
    "TemplateRenderer",
    "TemplateService",
    "extract_placeholders",
]
