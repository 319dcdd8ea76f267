"""CI gate: the Alembic migration graph must stay a single linear chain.

Every new migration chains off the current head. A second root
(down_revision = None) or a second head means two migrations were written
against the same parent and must be re-parented before merge.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

# Alembic needs the api directory on sys.path and the alembic.ini location.
api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

ROOT_REVISION = "001"


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = sorted(script.get_heads())
    revisions = list(script.walk_revisions())
    roots = sorted(r.revision for r in revisions if r.down_revision is None)

    failed = False
    if len(heads) != 1:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected a single head, found {len(heads)}: {heads}")
        print("  Fix: chain the newer migration off the other head.")
        failed = True

    if roots != [ROOT_REVISION]:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected only {ROOT_REVISION!r} as root, found: {roots}")
        print("  Fix: new migrations must set down_revision to the current head.")
        failed = True

    if failed:
        return 1

    print(f"Migration integrity check: OK (head {heads[0]}, {len(revisions)} total)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
