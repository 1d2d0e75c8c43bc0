"""
Database setup script
Creates every table declared in database/models.py
"""

from dotenv import load_dotenv
load_dotenv()

from database.database import engine, Base
import database.models  # noqa: F401  registers the models on Base


def create_tables():
    """Create all tables in the database"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")
    print("\nTables:")
    for name in sorted(Base.metadata.tables):
        print(f"  - {name}")


if __name__ == "__main__":
    create_tables()
