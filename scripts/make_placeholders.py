#!/usr/bin/env python3
"""
Write sample base images for the demo.

Creates {root}/placeholder.png (BGRA gradient + shapes) and, optionally,
extra named images. Output is deterministic for a given size and seed.

Examples:
  python scripts/make_placeholders.py
  python scripts/make_placeholders.py --root data/images --size 640x360 --extra banner logo
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from imagery.config import load_config


def parse_size(s: str) -> Tuple[int, int]:
    w, h = s.lower().split("x")
    return int(w), int(h)


def synth_placeholder(w: int, h: int, seed: int = 0) -> np.ndarray:
    """Gradient background, a few shapes and a label; fully opaque BGRA."""
    rng = np.random.default_rng(seed)
    xs = np.linspace(0, 255, w, dtype=np.float32)
    ys = np.linspace(0, 255, h, dtype=np.float32)
    img = np.zeros((h, w, 4), dtype=np.uint8)
    img[..., 0] = np.clip(xs[None, :] * 0.6 + 60, 0, 255).astype(np.uint8)
    img[..., 1] = np.clip(ys[:, None] * 0.5 + 40, 0, 255).astype(np.uint8)
    img[..., 2] = 120
    img[..., 3] = 255

    for _ in range(6):
        cx, cy = int(rng.integers(0, w)), int(rng.integers(0, h))
        r = int(rng.integers(min(w, h) // 12, min(w, h) // 5))
        color = tuple(int(c) for c in rng.integers(0, 255, 3)) + (255,)
        cv2.circle(img, (cx, cy), r, color, thickness=-1, lineType=cv2.LINE_AA)
    cv2.rectangle(img, (w // 10, h // 10), (w - w // 10, h - h // 10), (255, 255, 255, 255), 3)
    cv2.putText(img, "placeholder", (w // 6, h // 2), cv2.FONT_HERSHEY_SIMPLEX,
                max(0.5, w / 640.0), (20, 20, 20, 255), 2, cv2.LINE_AA)
    return img


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="YAML config (images.root / images.placeholder)")
    ap.add_argument("--root", default=None, help="Output directory (overrides config)")
    ap.add_argument("--size", default="640x360", help="WxH")
    ap.add_argument("--seed", type=int, default=7)
    ap.add_argument("--extra", nargs="*", default=[], help="Additional image names to synthesize")
    args = ap.parse_args()

    cfg = load_config(args.config)
    root = Path(args.root or cfg.images.root)
    root.mkdir(parents=True, exist_ok=True)
    w, h = parse_size(args.size)

    names = [cfg.images.placeholder] + list(args.extra)
    for i, name in enumerate(names):
        out = root / f"{name}.png"
        img = synth_placeholder(w, h, seed=args.seed + i)
        if not cv2.imwrite(str(out), img):
            raise SystemExit(f"Failed to write {out}")
        print(f"Wrote {out} ({w}x{h})")


if __name__ == "__main__":
    main()
