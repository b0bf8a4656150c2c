#!/usr/bin/env python3
"""
Create the PostgreSQL tables used by the Scrambler scorer.
"""
import os
import sys

from scrambler.datastore_pg import SCHEMA_STATEMENTS, create_tables


def main():
    """Create the schema in the database named by DATABASE_URL."""
    if not os.environ.get("DATABASE_URL"):
        print("DATABASE_URL environment variable not set")
        return 1
    print("Creating database schema...")
    create_tables()
    print(f"Applied {len(SCHEMA_STATEMENTS)} schema statements.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
