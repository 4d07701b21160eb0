# create_tables.py: create the schema and seed business stats
from tycoon.models import init_db

if __name__ == "__main__":
    print("Creating tables...")
    init_db()
    print("Done.")
