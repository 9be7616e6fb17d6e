"""Output helpers for persisting derivation results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from .models import FullStatsPlan


def plan_to_dict(plan: FullStatsPlan) -> dict[str, list[dict[str, Any]]]:
    """Return *plan* as JSON-ready records (buffers are never serialised)."""
    return {fmt: [stat.to_dict() for stat in stats] for fmt, stats in plan.items()}


def write_manifest(path: Path, plans: Mapping[str, FullStatsPlan]) -> Path:
    """Write the per-source *plans* to *path* as JSON and return the path."""
    serialised = {source: plan_to_dict(plan) for source, plan in plans.items()}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(serialised, indent=2), encoding="utf-8")
    return path
