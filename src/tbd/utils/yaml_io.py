"""
YAML helpers.

Files on the sync branch can be damaged by a hand-resolved git merge that
left the same key twice. PyYAML silently keeps the last occurrence; the
tolerant loader keeps that behavior but reports which keys were repeated so
callers can warn that the file should be rewritten.
"""

from __future__ import annotations

from typing import Any

import yaml


class _DuplicateTrackingLoader(yaml.SafeLoader):
    """SafeLoader that records repeated mapping keys (last occurrence wins)."""

    def __init__(self, stream: str) -> None:
        super().__init__(stream)
        self.duplicate_keys: list[str] = []

    def construct_mapping(self, node: yaml.Node, deep: bool = False) -> dict[Any, Any]:
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
            seen: set[Any] = set()
            for key_node, _ in node.value:
                key = self.construct_object(key_node, deep=deep)
                try:
                    if key in seen:
                        self.duplicate_keys.append(str(key))
                    seen.add(key)
                except TypeError:
                    # Unhashable key; the base constructor reports it
                    continue
        return super().construct_mapping(node, deep=deep)


def load_yaml_tolerant(text: str) -> tuple[Any, list[str]]:
    """
    Parse YAML, tolerating duplicate keys.

    Args:
        text: YAML document.

    Returns:
        Tuple of (parsed data, list of keys that appeared more than once).

    Raises:
        yaml.YAMLError: If the document is not valid YAML.
    """
    loader = _DuplicateTrackingLoader(text)
    try:
        data = loader.get_single_data()
        return data, list(loader.duplicate_keys)
    finally:
        loader.dispose()


def dump_yaml(data: Any, *, sort_keys: bool = True) -> str:
    """Serialize data as block-style YAML."""
    return yaml.safe_dump(
        data,
        sort_keys=sort_keys,
        default_flow_style=False,
        allow_unicode=True,
    )
