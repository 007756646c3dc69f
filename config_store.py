# config_store.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Mapping
import json
import logging

from yard_core import DEFAULT_STACKERS, StackerConfig, StackerId

logger = logging.getLogger(__name__)

STORAGE_KEY_CONFIG = "yard_management_stacker_config"


def default_configs(stackers: Iterable[StackerId] = DEFAULT_STACKERS) -> Dict[StackerId, StackerConfig]:
    return {str(s): StackerConfig() for s in stackers}


def configs_from_payload(
    payload: Mapping,
    stackers: Iterable[StackerId] = DEFAULT_STACKERS,
) -> Dict[StackerId, StackerConfig]:
    """Stored `{id: {"start": "HH:MM", "mph": n}}` -> validated configs (missing ids get defaults)."""
    out = default_configs(stackers)
    for sid in out:
        raw = payload.get(sid)
        if isinstance(raw, Mapping):
            out[sid] = StackerConfig.parse(raw.get("start"), raw.get("mph"))
    return out


def configs_to_payload(configs: Mapping[StackerId, StackerConfig]) -> Dict[str, dict]:
    return {str(sid): cfg.to_dict() for sid, cfg in configs.items()}


@dataclass(frozen=True)
class JsonConfigStore:
    """
    Per-stacker settings kept in one JSON file, under a single key so the
    file can be shared with other settings.
    """
    path: Path
    key: str = STORAGE_KEY_CONFIG

    def load(self, stackers: Iterable[StackerId] = DEFAULT_STACKERS) -> Dict[StackerId, StackerConfig]:
        stackers = tuple(stackers)
        p = Path(self.path)
        if not p.exists():
            return default_configs(stackers)
        try:
            doc = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load stacker config from %s: %s", p, exc)
            return default_configs(stackers)

        payload = doc.get(self.key) if isinstance(doc, dict) else None
        if not isinstance(payload, dict):
            return default_configs(stackers)
        return configs_from_payload(payload, stackers)

    def save(self, configs: Mapping[StackerId, StackerConfig]) -> None:
        p = Path(self.path)
        doc: dict = {}
        if p.exists():
            try:
                loaded = json.loads(p.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    doc = loaded
            except ValueError:
                logger.warning("Overwriting unreadable config file %s", p)
        doc[self.key] = configs_to_payload(configs)

        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        tmp.replace(p)
