"""Local stand-in agent for CLI executor integration tests."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the task prompt back; optionally fail or stall."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=False)
    parser.add_argument("--fail", action="store_true")
    parser.add_argument("--exit-code", type=int, default=3)
    parser.add_argument("--sleep", type=float, default=0.0)
    args, _ = parser.parse_known_args(argv)

    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text("utf-8")
    else:
        prompt = sys.stdin.read()

    if args.sleep > 0:
        time.sleep(args.sleep)
    if args.fail:
        print("echo agent failure requested", file=sys.stderr)
        return args.exit_code

    first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
    print(f"echo: {first_line}")
    print("Files modified: README.md")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
