#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

from pose.backend import PoseFrame
from pose.smoothing import SMOOTHER_PRESETS
from scoring.profile import ProfileError, get_builtin_profile, load_profile
from session.workout import WorkoutSession


logger = logging.getLogger("formscore.replay")


def iter_jsonl_frames(path: Path) -> Iterator[Tuple[float, Optional[PoseFrame]]]:
    """
    Read recorded frames, one JSON object per line:

        {"timestamp_ms": 0, "landmarks": [{x, y, z, visibility} * 33], "world_landmarks": [...]}

    A missing or empty "landmarks" entry is a no-person frame.
    """
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{lineno}: invalid JSON ({exc.msg})") from exc
            if "timestamp_ms" not in record:
                raise ValueError(f"{path}:{lineno}: missing timestamp_ms")
            landmarks = record.get("landmarks")
            frame = PoseFrame.from_dicts(landmarks, record.get("world_landmarks")) if landmarks else None
            yield float(record["timestamp_ms"]), frame


def iter_video_frames(path: Path, model_complexity: int = 1) -> Iterator[Tuple[float, Optional[PoseFrame]]]:
    import cv2  # type: ignore

    from pose.backend import PoseBackend

    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video {path}")
    fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0) or 30.0
    try:
        with PoseBackend(model_complexity=model_complexity) as backend:
            idx = 0
            while True:
                ok, frame_bgr = cap.read()
                if not ok:
                    break
                yield idx * 1000.0 / fps, backend.infer(frame_bgr)
                idx += 1
    finally:
        cap.release()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay recorded pose frames through a scoring session.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--frames", type=Path, help="JSONL file of landmark frames")
    source.add_argument("--video", type=Path, help="Video file (requires mediapipe and opencv)")
    parser.add_argument("--exercise", default="side_squat", help="Exercise code (default: side_squat)")
    parser.add_argument("--profile", type=Path, help="JSON scoring profile overriding the built-in one")
    parser.add_argument(
        "--smoother",
        default="SMOOTH",
        choices=sorted(SMOOTHER_PRESETS),
        help="Landmark smoothing preset",
    )
    parser.add_argument("--timeline-interval-ms", type=float, default=1000.0)
    parser.add_argument("--model-complexity", type=int, default=1, choices=(0, 1, 2))
    parser.add_argument("--output", type=Path, help="Write the summary here instead of stdout")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.profile is not None:
            data = json.loads(args.profile.read_text(encoding="utf-8"))
            data.setdefault("exercise_code", args.exercise)
            profile = load_profile(data)
        else:
            profile = get_builtin_profile(args.exercise)
    except ProfileError as exc:
        print(f"[replay] {exc}", file=sys.stderr)
        return 2

    session = WorkoutSession(
        profile,
        smoother_config=SMOOTHER_PRESETS[args.smoother],
        timeline_interval_ms=args.timeline_interval_ms,
    )
    frames = iter_jsonl_frames(args.frames) if args.frames else iter_video_frames(args.video, args.model_complexity)

    for timestamp_ms, frame in frames:
        result = session.process_frame(frame, timestamp_ms)
        if result is not None and result.rep is not None:
            logger.info("rep %d: %s", result.rep.rep_index, result.rep.total)

    summary = session.end()
    text = json.dumps(summary, indent=2)
    if args.output is not None:
        args.output.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
