#!/usr/bin/env python3
"""
Database initialization script for linkgate.

Creates the page and link tables and checks the holdings cache connection.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from linkgate.config import get_config
from linkgate.database import check_database_health, check_redis_health, close_all, init_database, init_redis


def main():
    """Initialize database and create all tables."""
    print("=" * 60)
    print("linkgate Database Initialization")
    print("=" * 60)

    cfg = get_config()
    try:
        db_url = cfg["DATABASE_URL"]
        print(f"\n📊 Database URL: {db_url.split('@')[1] if '@' in db_url else db_url}")

        print("\n🔨 Creating database tables...")
        init_database(db_url, create_tables=True)
        print("✅ All tables created successfully")

        print("\n🔌 Initializing cache...")
        init_redis(cfg)

        print("\n🏥 Checking health...")
        database = check_database_health()
        cache = check_redis_health(configured_backend=cfg.get("CACHE_BACKEND"))
        print(f"  Database: {database['status']}")
        print(f"  Cache ({cache.get('cache')}): {cache['status']}")

        if database["status"] == "healthy" and cache["status"] == "healthy":
            print("\n✅ Database initialization complete!")
            print("\n📝 Next step: gunicorn wsgi:application")
            return 0

        print("\n⚠️  Some services are not healthy. Check configuration.")
        return 1

    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback

        traceback.print_exc()
        return 1
    finally:
        close_all()


if __name__ == "__main__":
    sys.exit(main())
