from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

from hidden_items.effects.index import EffectIndex
from hidden_items.effects.records import EffectInstance

log = logging.getLogger("hidden_items.persistence")

PersistableState = Dict[str, Dict[str, Any]]


def snapshot(effects: EffectIndex) -> PersistableState:
    """Serialize the effect index. The group index is always rebuilt, never saved."""
    state = {key: instance.to_payload() for key, instance in effects.items()}
    log.debug("Saving %d hidden item instance(s)", len(state))
    return state


def instances_from_snapshot(state: Mapping[str, Mapping[str, Any]] | None) -> List[EffectInstance]:
    """Rebuild instances from a snapshot, skipping entries that cannot be read."""
    if not state:
        return []
    instances: List[EffectInstance] = []
    for key, payload in state.items():
        try:
            instance = EffectInstance.from_payload(key, dict(payload))
        except (KeyError, TypeError, ValueError) as exc:
            log.error("Dropping unreadable hidden item entry %r: %s", key, exc)
            continue
        instances.append(instance)
    log.debug("Loaded %d hidden item instance(s)", len(instances))
    return instances


def save_snapshot(path: Path | str, state: PersistableState) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(state, handle, indent=2)


def load_snapshot(path: Path | str) -> PersistableState | None:
    """Read a snapshot; a missing or corrupt file counts as a fresh run."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError:
        log.error("Hidden item save data at %s is corrupt, starting fresh", path)
        return None
    if not isinstance(payload, dict):
        log.error("Hidden item save data at %s has an unexpected layout, starting fresh", path)
        return None
    return payload
