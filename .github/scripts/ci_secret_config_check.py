"""CI secret config presence check - run from repo root.

Deploy templates must name every secret the API refuses to run without, so a
new environment can't be stood up with one silently missing.
"""
from __future__ import annotations
from pathlib import Path
import sys

required_groups: list[tuple[str, ...]] = [
    ("SECRET_KEY",),
    ("WEBHOOK_SECRET",),
    ("DATABASE_URL", "POSTGRES_PASSWORD"),
    ("SMTP_PASSWORD",),
]

candidate_files: list[Path] = [p for p in (Path(".env.example"), Path("docker-compose.yml")) if p.exists()]

if not candidate_files:
    print("Secret config presence check FAILED: no template/config files found to scan.")
    sys.exit(1)

corpus = "\n".join(p.read_text(encoding="utf-8", errors="ignore") for p in candidate_files)

missing = [" or ".join(group) for group in required_groups if not any(name in corpus for name in group)]

if missing:
    print("Secret config presence check FAILED. Missing required secret names in templates:")
    for m in missing:
        print(f"- {m}")
    sys.exit(1)

print("Secret config presence check: OK")
for p in candidate_files:
    print(f"- {p}")
