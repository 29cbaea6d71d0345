"""
Database Initialization Script for Production
Creates all tables in the database and a default championship. Run this on first deployment.

Usage: python init_db.py [championship name]
"""

import sys
from datetime import datetime
from dotenv import load_dotenv
from app import app, db
from models import Championship

load_dotenv()


def init_database(championship_name="Tennis League"):
    """Initialize the database with all tables"""
    with app.app_context():
        print("🔧 Initializing database...")
        print(f"📍 Database URI: {app.config['SQLALCHEMY_DATABASE_URI'][:50]}...")

        db.create_all()

        if not Championship.query.first():
            now = datetime.now()
            db.session.add(Championship(name=championship_name, is_default=True, created_at=now, updated_at=now))
            db.session.commit()
            print(f"🏆 Default championship created: {championship_name}")

        print("✅ Database initialized successfully!")
        print("📋 Tables:")
        for table in db.metadata.sorted_tables:
            print(f"   - {table.name}")


if __name__ == "__main__":
    init_database(*sys.argv[1:2])
