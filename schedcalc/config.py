from __future__ import annotations

import copy
from pathlib import Path
from typing import Dict

import yaml

from schedcalc.loaders import DEFAULT_FORMATS

MAX_UPLOAD_BYTES = 10 << 20

DEFAULT_CONFIG: Dict[str, object] = {
    "db_path": "schedcalc.db",
    "uploads_dir": "uploads",
    "max_upload_bytes": MAX_UPLOAD_BYTES,
    "tax_year": 2024,
    "csv_formats": dict(DEFAULT_FORMATS),
    "classifier": {
        "batch_size": 10,
        "batch_timeout": 60,
        "single_timeout": 30,
    },
    "deductions": {
        "mileage_rate": 0.67,
        "home_office_rate": 5.0,
        "home_office_max_sqft": 300,
    },
}


def _merge_defaults(current: Dict[str, object], defaults: Dict[str, object]) -> Dict[str, object]:
    """Merge missing default keys into the current config recursively."""
    merged = dict(current)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def load_config(path: str | Path | None = None) -> Dict[str, object]:
    """Load a YAML config file over the defaults; a missing file yields the defaults."""
    if path is None:
        return _merge_defaults({}, DEFAULT_CONFIG)
    target = Path(path)
    if not target.exists():
        return _merge_defaults({}, DEFAULT_CONFIG)
    with target.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {target} must contain a mapping")
    return _merge_defaults(data, DEFAULT_CONFIG)


def save_config(config: Dict[str, object], path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fp:
        yaml.safe_dump(config, fp, sort_keys=False)
