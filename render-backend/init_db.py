#!/usr/bin/env python3
"""
Database initialization script for Docker.
Creates the render_jobs table if it doesn't exist.
"""

import sys
from config import DATABASE_URL
from database import init_db


def init_database():
    """Initialize the database by creating all tables."""
    try:
        print(f"Creating database tables on {DATABASE_URL.split('@')[-1]}...")
        init_db()
        print("✅ Database tables created successfully!")
    except Exception as e:
        print(f"❌ Error creating database tables: {e}")
        sys.exit(1)


if __name__ == "__main__":
    init_database()
