"""Render a derivation plan as ``<img>`` or ``<picture>`` markup."""

from __future__ import annotations

import html
from typing import Any, Mapping

from ..errors import ConfigurationError
from .models import FullStatsPlan, Stat

MarkupObject = dict[str, Any]


def generate_object(plan: FullStatsPlan, attributes: Mapping[str, Any] | None = None) -> MarkupObject:
    """Return the markup tree for *plan* as nested dicts.

    A single format yields ``{"img": {...}}``. Several formats yield
    ``{"picture": [{"source": {...}}, ..., {"img": {...}}]}``, where the last
    format group is the ``<img>`` fallback. The fallback ``src`` is the
    smallest entry of that group; ``width``/``height`` come from its largest.
    """
    attributes = dict(attributes or {})
    if "alt" not in attributes:
        raise ConfigurationError("Missing `alt` attribute: pass alt='' for decorative images")

    groups = [(fmt, stats) for fmt, stats in plan.items() if stats]
    if not groups:
        raise ConfigurationError("No derived images to reference in markup")

    sizes = attributes.pop("sizes", None)
    for fmt, stats in groups:
        if len(stats) > 1 and not sizes:
            raise ConfigurationError(
                f"Missing `sizes` attribute: {fmt} has {len(stats)} widths"
            )

    fallback_format, fallback = groups[-1]
    img = attributes
    img["src"] = fallback[0].url
    img["width"] = fallback[-1].width
    img["height"] = fallback[-1].height

    if len(groups) == 1:
        if len(fallback) > 1:
            img["srcset"] = _srcset(fallback)
            img["sizes"] = sizes
        return {"img": img}

    children: list[MarkupObject] = []
    for fmt, stats in groups:
        if fmt == fallback_format and len(stats) == 1:
            continue
        source: dict[str, Any] = {"type": stats[0].source_type, "srcset": _srcset(stats)}
        if sizes:
            source["sizes"] = sizes
        children.append({"source": source})
    children.append({"img": img})
    return {"picture": children}


def generate_html(plan: FullStatsPlan, attributes: Mapping[str, Any] | None = None) -> str:
    """Return *plan* rendered as an HTML string."""
    return _render(generate_object(plan, attributes))


def _srcset(stats: list[Stat]) -> str:
    return ", ".join(stat.srcset for stat in stats)


def _render(node: MarkupObject) -> str:
    tag, value = next(iter(node.items()))
    if isinstance(value, list):
        inner = "".join(_render(child) for child in value)
        return f"<{tag}>{inner}</{tag}>"
    return f"<{tag}{_attributes(value)}>"


def _attributes(values: Mapping[str, Any]) -> str:
    parts = []
    for name, value in values.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(f" {name}")
        else:
            parts.append(f' {name}="{html.escape(str(value), quote=True)}"')
    return "".join(parts)
