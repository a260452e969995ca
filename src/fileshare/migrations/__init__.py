"""Migration discovery and idempotency validation for the share schema.

SQL files named ``NNN_description.sql`` live next to this module and are
applied with ``supabase db push``. This module is the lint layer, not the
executor.

Idempotency contract, checked line by line:
    1. CREATE TABLE / INDEX / SCHEMA use IF NOT EXISTS.
    2. CREATE FUNCTION uses CREATE OR REPLACE.
    3. CREATE TRIGGER / POLICY is preceded by DROP ... IF EXISTS.
    4. DROP TABLE / INDEX use IF EXISTS.
    5. ADD COLUMN uses IF NOT EXISTS (warning).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

_MIGRATION_RE = re.compile(r'^(\d{3})_.*\.sql$')

MIGRATIONS_DIR = Path(__file__).parent


@dataclass(frozen=True, slots=True)
class MigrationFile:
    """A discovered migration file with its sequence number."""

    sequence: int
    filename: str
    path: Path

    def read(self) -> str:
        return self.path.read_text()


@dataclass
class ValidationResult:
    """Idempotency findings for one migration file."""

    path: Path
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _rule(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# (pattern, message, severity). Each pattern matches an unsafe line start.
_LINE_RULES: list[tuple[re.Pattern[str], str, str]] = [
    (_rule(r'^create\s+table\s+(?!if\s+not\s+exists)'),
     'CREATE TABLE without IF NOT EXISTS', 'error'),
    (_rule(r'^create\s+(unique\s+)?index\s+(?!if\s+not\s+exists)'),
     'CREATE INDEX without IF NOT EXISTS', 'error'),
    (_rule(r'^create\s+schema\s+(?!if\s+not\s+exists)'),
     'CREATE SCHEMA without IF NOT EXISTS', 'error'),
    (_rule(r'^create\s+function\s+'),
     'CREATE FUNCTION without OR REPLACE', 'error'),
    (_rule(r'^drop\s+table\s+(?!if\s+exists)'),
     'DROP TABLE without IF EXISTS', 'error'),
    (_rule(r'^drop\s+index\s+(?!if\s+exists)'),
     'DROP INDEX without IF EXISTS', 'error'),
    (_rule(r'^(?:alter\s+table\s+\S+\s+)?add\s+column\s+(?!if\s+not\s+exists)'),
     'ADD COLUMN without IF NOT EXISTS', 'warning'),
]

# CREATE <kind> <name> must follow DROP <kind> IF EXISTS <name>.
_PAIRED_KINDS = ('trigger', 'policy')
_CREATE_PAIRED = {
    kind: _rule(rf'^create\s+(?:or\s+replace\s+)?{kind}\s+(\S+)')
    for kind in _PAIRED_KINDS
}
_DROP_PAIRED = {
    kind: _rule(rf'^drop\s+{kind}\s+if\s+exists\s+(\S+)')
    for kind in _PAIRED_KINDS
}


def discover_migrations(directory: Path | None = None) -> list[MigrationFile]:
    """Return migration files sorted by sequence number.

    Raises:
        ValueError: If two files share a sequence number.
    """
    d = directory or MIGRATIONS_DIR
    seen: dict[int, str] = {}
    results: list[MigrationFile] = []

    for p in sorted(d.iterdir()):
        m = _MIGRATION_RE.match(p.name)
        if not p.is_file() or not m:
            continue
        seq = int(m.group(1))
        if seq in seen:
            raise ValueError(
                f'Duplicate migration sequence {seq:03d}: {seen[seq]} and {p.name}'
            )
        seen[seq] = p.name
        results.append(MigrationFile(sequence=seq, filename=p.name, path=p))

    results.sort(key=lambda mf: mf.sequence)
    return results


def validate_idempotency(sql_path: Path) -> ValidationResult:
    """Check one migration file against the idempotency contract."""
    result = ValidationResult(path=sql_path)
    dropped: dict[str, set[str]] = {kind: set() for kind in _PAIRED_KINDS}

    for i, line in enumerate(sql_path.read_text().splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith('--'):
            continue

        paired = False
        for kind in _PAIRED_KINDS:
            drop = _DROP_PAIRED[kind].match(stripped)
            if drop:
                dropped[kind].add(drop.group(1).lower())
                paired = True
                break
            create = _CREATE_PAIRED[kind].match(stripped)
            if create:
                if create.group(1).lower() not in dropped[kind]:
                    result.errors.append(
                        f'Line {i}: CREATE {kind.upper()} {create.group(1)} '
                        f'without preceding DROP {kind.upper()} IF EXISTS'
                    )
                paired = True
                break
        if paired:
            continue

        for pattern, message, severity in _LINE_RULES:
            if pattern.match(stripped):
                target = result.errors if severity == 'error' else result.warnings
                target.append(f'Line {i}: {message}')

    return result


def validate_all(directory: Path | None = None) -> dict[str, ValidationResult]:
    """Validate every discovered migration; keyed by filename."""
    return {
        mf.filename: validate_idempotency(mf.path)
        for mf in discover_migrations(directory)
    }


def check_sequence_gaps(migrations: Sequence[MigrationFile]) -> list[str]:
    """Warnings for any gaps in migration sequence numbers."""
    warnings: list[str] = []
    for prev, curr in zip(migrations, migrations[1:]):
        if curr.sequence != prev.sequence + 1:
            warnings.append(
                f'Gap in sequence: {prev.sequence:03d} -> {curr.sequence:03d} '
                f'(expected {prev.sequence + 1:03d})'
            )
    return warnings
