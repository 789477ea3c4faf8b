"""Migration sources.

The lifecycle core does not define a migration file format.  Anything that
implements ``MigrationSource`` can feed the runner; ``SqlDirectorySource``
is the bundled reference implementation reading plain ``.sql`` files.

Usage:
    from db_lifecycle.migrations.source import SqlDirectorySource

    source = SqlDirectorySource("migrations")
    for migration in source.load():
        print(migration.version, migration.name, migration.tables)
"""

import logging
import re
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from db_lifecycle.errors import MigrationError

logger = logging.getLogger(__name__)


class Migration(BaseModel):
    """One versioned migration.

    Attributes:
        version: Numeric version string; migrations apply in ascending
            numeric order.
        name: Human-readable name.
        statements: SQL statements, executed in order in one transaction.
        tables: Tables the migration creates or alters.  Models on these
            tables are considered covered by migration history.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    name: str
    statements: tuple[str, ...] = ()
    tables: tuple[str, ...] = ()

    @property
    def sort_key(self) -> tuple[int, str]:
        return (int(self.version), self.version)

    @property
    def label(self) -> str:
        return f"{self.version}_{self.name}"


class MigrationSource(Protocol):
    """Supplies the full, ordered list of known migrations."""

    def load(self) -> list[Migration]:
        ...


# ------------------------------------------------------------------
# SQL directory source
# ------------------------------------------------------------------

_FILE_PATTERN = re.compile(r"^(\d+)_([\w\-]+)\.sql$")
_STATEMENT_SPLIT = re.compile(r";[ \t]*$", re.MULTILINE)
_TABLE_PATTERN = re.compile(
    r"\b(?:CREATE\s+TABLE(?:\s+IF\s+NOT\s+EXISTS)?"
    r"|ALTER\s+TABLE(?:\s+IF\s+EXISTS)?(?:\s+ONLY)?)"
    r"\s+(?:\"?\w+\"?\.)?\"?(\w+)\"?",
    re.IGNORECASE,
)


def split_statements(sql: str) -> list[str]:
    """Split a SQL script on semicolons that end a line.

    Chunks holding only ``--`` comments or whitespace are dropped.

    Example:
        >>> split_statements("CREATE TABLE a (id INT);\\n-- note\\nCREATE TABLE b (id INT);")
        ['CREATE TABLE a (id INT)', '-- note\\nCREATE TABLE b (id INT)']
    """
    statements = []
    for chunk in _STATEMENT_SPLIT.split(sql):
        chunk = chunk.strip()
        code_lines = [
            line for line in chunk.splitlines() if line.strip() and not line.strip().startswith("--")
        ]
        if code_lines:
            statements.append(chunk)
    return statements


def touched_tables(statements: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Tables named by CREATE TABLE / ALTER TABLE, in first-seen order."""
    seen: dict[str, None] = {}
    for statement in statements:
        for match in _TABLE_PATTERN.finditer(statement):
            seen.setdefault(match.group(1), None)
    return tuple(seen)


class SqlDirectorySource:
    """Reads ``<version>_<name>.sql`` files from one directory.

    A missing directory is an empty source, not an error.

    Args:
        directory: Directory holding the migration files.

    Raises:
        MigrationError: From ``load()``, when two files share a version.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            (p for p in self.directory.iterdir() if p.is_file() and _FILE_PATTERN.match(p.name)),
            key=lambda p: int(_FILE_PATTERN.match(p.name).group(1)),
        )

    def count(self) -> int:
        return len(self.files())

    def load(self) -> list[Migration]:
        migrations: dict[int, Migration] = {}
        for path in self.files():
            match = _FILE_PATTERN.match(path.name)
            version, name = match.group(1), match.group(2)
            if int(version) in migrations:
                raise MigrationError(
                    f"Duplicate migration version {version}: "
                    f"{migrations[int(version)].label}.sql and {path.name}"
                )
            statements = split_statements(path.read_text())
            migrations[int(version)] = Migration(
                version=version,
                name=name,
                statements=tuple(statements),
                tables=touched_tables(statements),
            )
        logger.debug("Loaded %d migration files from %s", len(migrations), self.directory)
        return [migrations[v] for v in sorted(migrations)]
