"""Script to run database migrations."""

import sys

from alembic import command
from alembic.config import Config


def run_migrations(revision: str = "head") -> None:
    """Run database migrations up to a revision."""
    alembic_cfg = Config("alembic.ini")

    try:
        print(f"Running database migrations to {revision}...")
        command.upgrade(alembic_cfg, revision)
        print("✓ Migrations completed successfully!")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def rollback(revision: str = "-1") -> None:
    """Step the schema back."""
    alembic_cfg = Config("alembic.ini")

    try:
        print(f"Downgrading database to {revision}...")
        command.downgrade(alembic_cfg, revision)
        print("✓ Downgrade completed successfully!")
    except Exception as e:
        print(f"✗ Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) == 1:
        run_migrations()
    elif sys.argv[1] == "upgrade":
        run_migrations(sys.argv[2] if len(sys.argv) > 2 else "head")
    elif sys.argv[1] == "downgrade":
        rollback(sys.argv[2] if len(sys.argv) > 2 else "-1")
    else:
        print("Usage: python scripts/migrate.py [upgrade <rev> | downgrade <rev>]")
