"""Placeholder substitution for option values and generated step scripts."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
import re


_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\s*\{\{([^{}]+)\}\}\s*$")


class TemplateError(ValueError):
    """Raised when template resolution fails."""


@dataclass(slots=True)
class TemplateResolver:
    """Resolves ``{{dotted.path}}`` placeholders against a nested mapping.

    A string consisting of a single placeholder resolves to the referenced
    value itself; placeholders embedded in longer text are converted with
    :func:`str`. Values found in the context are resolved recursively, so a
    context entry may itself reference other entries.
    """

    context: Mapping[str, Any]
    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, value: Any) -> Any:
        return self._resolve_value(value, stack=[])

    def render(self, template: str) -> str:
        """Resolve *template* and always return text."""
        return str(self._substitute(template, stack=[]))

    def _resolve_value(self, value: Any, *, stack: list[str]) -> Any:
        if isinstance(value, str):
            match = _SINGLE_PLACEHOLDER_PATTERN.match(value)
            if match:
                return self._resolve_path(match.group(1).strip(), stack=stack)
            return self._substitute(value, stack=stack)
        if isinstance(value, list):
            return [self._resolve_value(item, stack=list(stack)) for item in value]
        if isinstance(value, tuple):
            return tuple(self._resolve_value(item, stack=list(stack)) for item in value)
        if isinstance(value, dict):
            return {key: self._resolve_value(item, stack=list(stack)) for key, item in value.items()}
        return value

    def _substitute(self, text: str, *, stack: list[str]) -> str:
        if not _PLACEHOLDER_PATTERN.search(text):
            return text

        def replacement(match: re.Match[str]) -> str:
            result = self._resolve_path(match.group(1).strip(), stack=stack)
            if isinstance(result, (list, tuple)):
                return " ".join(str(item) for item in result)
            return str(result)

        return _PLACEHOLDER_PATTERN.sub(replacement, text)

    def _resolve_path(self, path: str, *, stack: list[str]) -> Any:
        if path in self._cache:
            return self._cache[path]
        if path in stack:
            cycle = " -> ".join(stack + [path])
            raise TemplateError(f"Circular reference detected: {cycle}")

        raw_value = self._lookup_raw(path)
        stack.append(path)
        resolved = self._resolve_value(raw_value, stack=stack)
        stack.pop()
        self._cache[path] = resolved
        return resolved

    def _lookup_raw(self, path: str) -> Any:
        current: Any = self.context
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            raise TemplateError(f"Cannot resolve path '{path}' in template context")
        if current is None:
            raise TemplateError(f"Path '{path}' has no value in template context")
        return current


__all__ = ["TemplateError", "TemplateResolver"]
