"""
Validate mission YAML files.

Usage: python -m scripts.validate_missions config/missions/

Checks YAML syntax, required fields, trigger and objective types, and
scripted-event references for every file given (directories are searched
recursively).
"""

import sys
from pathlib import Path

from gamecore.missions.loader import MissionLoader


def _mission_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(p for p in path.rglob("*") if p.suffix in (".yaml", ".yml"))
    return [path]


def validate(path_str: str) -> bool:
    """Validate and print results. Returns True if every file is valid."""
    loader = MissionLoader()
    path = Path(path_str)
    if not path.exists():
        print(f"  ✗ Not found: {path_str}")
        return False

    ok = True
    for mission_file in _mission_files(path):
        errors = loader.validate(mission_file)
        if errors:
            ok = False
            print(f"  ✗ {mission_file}")
            for err in errors:
                print(f"      - {err}")
        else:
            count = len(loader.load(mission_file))
            print(f"  ✓ {mission_file} ({count} missions)")
    return ok


def main(argv: list[str]) -> int:
    if len(argv) < 2:
        print(__doc__)
        return 2
    results = [validate(p) for p in argv[1:]]
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv))
