#!/usr/bin/env python3
"""
Pre-render every image variant on a running server.

Asks /images for the registered names and accepted ratios, then requests
/<name>.png?ratio=<r> for each pair and prints status, size and X-Cache.

Examples:
  python scripts/warm_cache.py
  python scripts/warm_cache.py --base-url http://localhost:8000 --names placeholder
"""
from __future__ import annotations

import argparse
import time
from typing import Dict, List

import requests


def fetch_catalog(session: requests.Session, base_url: str, timeout: float) -> Dict:
    r = session.get(f"{base_url}/images", timeout=timeout)
    if r.status_code != 200:
        raise RuntimeError(f"Imagery API error {r.status_code}: {r.text[:200]}")
    return r.json()


def warm(session: requests.Session, base_url: str, names: List[str], ratios: List[int], timeout: float) -> int:
    """Returns the number of failed variants."""
    failed = 0
    for name in names:
        for ratio in ratios:
            t0 = time.perf_counter()
            try:
                r = session.get(f"{base_url}/{name}.png", params={"ratio": ratio}, timeout=timeout)
            except requests.RequestException as e:
                print(f"  {name}@{ratio}: request failed: {e}")
                failed += 1
                continue
            dt_ms = (time.perf_counter() - t0) * 1e3
            if r.status_code != 200:
                print(f"  {name}@{ratio}: HTTP {r.status_code} {r.text[:120]}")
                failed += 1
                continue
            print(f"  {name}@{ratio}: {len(r.content)} bytes, {r.headers.get('X-Cache', '?')}, {dt_ms:.1f} ms")
    return failed


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base-url", default="http://127.0.0.1:8000")
    ap.add_argument("--names", nargs="*", default=None, help="Subset of names (default: all registered)")
    ap.add_argument("--timeout", type=float, default=30.0)
    args = ap.parse_args()

    base_url = args.base_url.rstrip("/")
    with requests.Session() as session:
        catalog = fetch_catalog(session, base_url, args.timeout)
        names = args.names or catalog.get("names", [])
        ratios = [int(r) for r in catalog.get("ratios", [])]
        print(f"Warming {len(names)} image(s) x {len(ratios)} ratio(s) on {base_url}")
        failed = warm(session, base_url, names, ratios, args.timeout)

    if failed:
        raise SystemExit(f"{failed} variant(s) failed")
    print("Done.")


if __name__ == "__main__":
    main()
