"""Reading dependency configuration files (TOML, JSON or YAML)."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

import json
import tomllib

import yaml


def _read_toml(path: Path) -> Any:
    return tomllib.loads(path.read_text(encoding="utf-8"))


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _read_yaml(path: Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


CONFIG_READERS: Dict[str, Callable[[Path], Any]] = {
    ".toml": _read_toml,
    ".json": _read_json,
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
}


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode ``path`` according to its suffix.

    An empty YAML document yields an empty mapping; any other non-mapping
    root is rejected.
    """

    reader = CONFIG_READERS.get(path.suffix.lower())
    if reader is None:
        supported = ", ".join(sorted(CONFIG_READERS))
        raise ValueError(f"Unsupported configuration file extension: {path.suffix}. Supported: {supported}")

    data = reader(path)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def collect_config_files(directory: Path) -> Dict[str, Path]:
    """Map entry names (file stems) to the configuration file defining them.

    An entry may be written in one format only; ``zlib.toml`` next to
    ``zlib.yaml`` is an error.
    """

    files: Dict[str, Path] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() not in CONFIG_READERS:
            continue
        if path.stem in files:
            raise ValueError(
                f"Multiple configuration files found for '{path.stem}': "
                f"'{files[path.stem].name}' and '{path.name}'"
            )
        files[path.stem] = path
    return files


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay ``overlay`` on ``base``; nested tables merge, everything else is replaced."""

    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        merged[key] = merge_mappings(current, value) if isinstance(current, Mapping) and isinstance(value, Mapping) else value
    return merged


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Accept a single string or a list of strings; blank entries are dropped."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, Sequence):
        raise TypeError(f"{label}must be a string or sequence of strings")

    items: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise TypeError(f"{label}entries must be strings")
        if item.strip():
            items.append(item.strip())
    return items


def resolve_config_paths(root: Path, directories: Iterable[Path]) -> tuple[tuple[Path, ...], tuple[Path, ...]]:
    """Split configuration directories into existing and missing ones.

    Relative entries are taken relative to ``root``. A directory listed more
    than once keeps only its last position, so later entries override.
    """

    ordered: List[Path] = []
    for raw in directories:
        path = raw if raw.is_absolute() else (root / raw).resolve()
        if path in ordered:
            ordered.remove(path)
        ordered.append(path)
    return (
        tuple(path for path in ordered if path.is_dir()),
        tuple(path for path in ordered if not path.is_dir()),
    )


__all__ = [
    "CONFIG_READERS",
    "collect_config_files",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "resolve_config_paths",
]
