#!/usr/bin/env python3
"""
Database initialization script

Creates the IntelliForm tables in the database named by DATABASE_URL.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from intelliform.database.database_config import DatabaseConfig, init_database
from intelliform.utils.settings import AppSettings


def main(drop_first: bool = False) -> bool:
    print("🚀 Initializing database...")

    settings = AppSettings.from_env()
    db_config = DatabaseConfig(settings.database_url)
    print(f"📊 Database: {db_config.dialect_name}")

    try:
        if drop_first:
            print("⚠️ Dropping existing tables")
            db_config.drop_tables()
        init_database(db_config)
        print("🎉 Database initialized!")
        return True
    except Exception as e:
        print(f"❌ Database initialization failed: {e}")
        return False
    finally:
        db_config.dispose()


if __name__ == "__main__":
    success = main(drop_first="--drop" in sys.argv[1:])
    sys.exit(0 if success else 1)
