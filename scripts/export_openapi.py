#!/usr/bin/env python
"""Export FastAPI OpenAPI schema to assistant/openapi.yaml."""

from __future__ import annotations

import argparse
from pathlib import Path

import yaml


def main() -> None:
    repo_root = Path(__file__).resolve().parent.parent
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--output",
        type=Path,
        default=repo_root / "assistant" / "openapi.yaml",
        help="Where to write the schema.",
    )
    args = parser.parse_args()

    from assistant.main import app  # noqa: WPS433

    schema = app.openapi()
    args.output.write_text(yaml.dump(schema, sort_keys=False, allow_unicode=True), encoding="utf-8")
    print(f"Wrote {args.output}")


if __name__ == "__main__":
    main()
