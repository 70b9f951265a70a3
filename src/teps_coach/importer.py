from __future__ import annotations

import argparse
from glob import glob
from pathlib import Path
from typing import Any, Sequence

import yaml

from .db import init_db
from .errors import ValidationFailure
from .models import IMPORT_SOURCES
from .question_bank import ImportReport, bulk_import


def load_records(path: Path) -> list[Any]:
    """Read a YAML or JSON question file: a list, or a mapping with a ``questions`` list."""

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        raise ValidationFailure(f"{path}: expected a list of questions")
    return data


def import_paths(paths: Sequence[Path], source: str = "import") -> ImportReport:
    """Import every file into the bank and merge the per-file reports.

    A file that cannot be read or parsed counts as one failure; the remaining
    files are still imported.
    """

    total = ImportReport()
    for path in paths:
        try:
            records = load_records(path)
        except (ValidationFailure, yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
            total.failed += 1
            total.errors.append(f"{path.name}: unreadable file ({exc})")
            continue
        report = bulk_import(records, source=source)
        total.imported += report.imported
        total.failed += report.failed
        total.errors.extend(f"{path.name}: {error}" for error in report.errors)
        total.question_ids.extend(report.question_ids)
    return total


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import TEPS questions into the question bank")
    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Question files to import; when omitted, files matching --glob are used",
    )
    parser.add_argument(
        "--glob",
        default="content/questions/*.yaml",
        help="Glob pattern for YAML or JSON question files",
    )
    parser.add_argument(
        "--source",
        default="import",
        choices=IMPORT_SOURCES,
        help="Provenance recorded on imported questions; official questions are approved on import",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    pattern = args.glob

    paths = list(args.files) or sorted(Path(p) for p in glob(pattern, recursive=True))
    if not paths:
        print(f"No question files found for pattern: {pattern}")
        return

    init_db()
    report = import_paths(paths, source=args.source)
    print(
        "Processed {files} files (imported: {ok}, failed: {failed})".format(
            files=len(paths),
            ok=report.imported,
            failed=report.failed,
        )
    )
    for error in report.errors:
        print(f"  {error}")


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
