from tycoon.models import Base, engine, init_db

print("Dropping all tables...")
Base.metadata.drop_all(bind=engine)

print("Creating all tables...")
init_db()

print("Database reset completed!")
