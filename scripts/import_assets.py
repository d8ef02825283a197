from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml

from trade_signal_engine.config import normalize_asset


def load_assets_yaml(path: Path) -> dict:
    if not path.exists():
        return {"assets": []}
    return yaml.safe_load(path.read_text()) or {"assets": []}


def save_assets_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False))


def parse_mints(payload: Any) -> list[str]:
    # Accept a list of strings, list of objects with 'mint', or newline-separated strings
    if isinstance(payload, list):
        mints: list[str] = []
        for row in payload:
            if isinstance(row, str):
                mints.append(row)
            elif isinstance(row, dict):
                m = row.get("mint") or row.get("address") or row.get("tokenAddress")
                if m:
                    mints.append(m)
        return [m for m in mints if m]
    if isinstance(payload, str):
        return [line.strip() for line in payload.splitlines() if line.strip()]
    return []


def upsert(assets: list[dict], mint: str, notes: str | None = None) -> bool:
    norm = normalize_asset(mint)
    for a in assets:
        if normalize_asset(str(a.get("mint") or "")) == norm:
            if notes and not a.get("notes"):
                a["notes"] = notes
            return False
    item = {"mint": mint}
    if notes:
        item["notes"] = notes
    assets.append(item)
    return True


def main() -> int:
    p = argparse.ArgumentParser(description="Import token mints into config/assets.yaml")
    p.add_argument("--input", "-i", help="Input file (JSON array or newline-separated mints). If omitted, reads stdin.")
    p.add_argument("--assets-yaml", default="config/assets.yaml", help="Path to assets.yaml")
    p.add_argument("--notes", default=None, help="Note stored with newly added mints")
    p.add_argument("--replace", action="store_true", help="Drop existing mints before importing")
    args = p.parse_args()

    raw = Path(args.input).read_text() if args.input else sys.stdin.read()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        payload = raw

    mints = parse_mints(payload)
    if not mints:
        print("No mints parsed from input", file=sys.stderr)
        return 1

    path = Path(args.assets_yaml)
    data = load_assets_yaml(path)
    assets: list[dict] = [] if args.replace else list(data.get("assets") or [])
    added = sum(1 for m in mints if upsert(assets, m, args.notes))

    data["assets"] = assets
    save_assets_yaml(path, data)
    print(f"Imported {added} new mint(s) into {path} ({len(assets)} total)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
