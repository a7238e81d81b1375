#!/usr/bin/env python
"""
Database migration helper.

Usage:
    python run_migrations.py create "message"   # Autogenerate a revision from the models
    python run_migrations.py upgrade [rev]      # Apply migrations (default: head)
    python run_migrations.py downgrade [rev]    # Roll back (default: one step)
    python run_migrations.py stamp [rev]        # Mark the database as being at rev
    python run_migrations.py current            # Show the applied revision
    python run_migrations.py history            # Show revision history
"""
import os
import sys

from alembic import command
from alembic.config import Config


alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))


def create_migration(message: str):
    command.revision(alembic_cfg, message=message, autogenerate=True)
    print(f"Migration '{message}' created")
    print("   Review the partial unique indexes, then run 'python run_migrations.py upgrade'")


def upgrade_migrations(revision: str = "head"):
    print(f"Upgrading database to: {revision}")
    command.upgrade(alembic_cfg, revision)
    print("Database upgraded successfully")


def downgrade_migrations(revision: str = "-1"):
    print(f"Downgrading database to: {revision}")
    command.downgrade(alembic_cfg, revision)
    print("Database downgraded successfully")


def stamp_revision(revision: str = "head"):
    command.stamp(alembic_cfg, revision)
    print(f"Database stamped at: {revision}")


def print_usage():
    print(__doc__)


ACTIONS = {
    "upgrade": (upgrade_migrations, "head"),
    "downgrade": (downgrade_migrations, "-1"),
    "stamp": (stamp_revision, "head"),
}


def main():
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    action = sys.argv[1].lower()

    try:
        if action == "create":
            if len(sys.argv) < 3:
                print("Error: Migration message required")
                print("   Usage: python run_migrations.py create 'migration message'")
                sys.exit(1)
            create_migration(sys.argv[2])

        elif action in ACTIONS:
            handler, default_revision = ACTIONS[action]
            handler(sys.argv[2] if len(sys.argv) > 2 else default_revision)

        elif action == "current":
            command.current(alembic_cfg)

        elif action == "history":
            command.history(alembic_cfg)

        else:
            print(f"Unknown action: {action}")
            print_usage()
            sys.exit(1)

    except Exception as e:
        print(f"Error running '{action}': {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
