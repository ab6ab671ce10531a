"""Scripted stand-in agent for supervisor and loop integration tests.

The script is a JSON object ``{"responses": [{"stdout", "stderr",
"exit_code", "sleep_seconds", "child_seconds"}, ...]}``.  Each invocation
replays the next response (the last one repeats once the list is exhausted)
and appends its argv to ``<script>.calls.jsonl``.  ``child_seconds`` starts a
sleeping child process first, the way a real agent starts tool processes, and
records its pid in ``<script>.child.pid``.
"""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Replay one scripted response."""

    parser = argparse.ArgumentParser(allow_abbrev=False)
    parser.add_argument("--script", required=True)
    args, agent_args = parser.parse_known_args(argv)

    script_path = Path(args.script)
    responses = json.loads(script_path.read_text("utf-8")).get("responses", [])
    counter_path = script_path.with_name(f"{script_path.name}.count")
    index = int(counter_path.read_text("utf-8")) if counter_path.exists() else 0
    counter_path.write_text(str(index + 1), "utf-8")

    calls_path = script_path.with_name(f"{script_path.name}.calls.jsonl")
    with calls_path.open("a", encoding="utf-8") as calls:
        calls.write(json.dumps(agent_args) + "\n")

    if not responses:
        return 0
    response = responses[min(index, len(responses) - 1)]
    child_seconds = float(response.get("child_seconds", 0))
    if child_seconds > 0:
        child = subprocess.Popen(  # noqa: S603
            [sys.executable, "-c", f"import time; time.sleep({child_seconds})"],
        )
        script_path.with_name(f"{script_path.name}.child.pid").write_text(str(child.pid), "utf-8")
    sleep_seconds = float(response.get("sleep_seconds", 0))
    if sleep_seconds > 0:
        time.sleep(sleep_seconds)
    sys.stdout.write(response.get("stdout", ""))
    sys.stderr.write(response.get("stderr", ""))
    return int(response.get("exit_code", 0))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
