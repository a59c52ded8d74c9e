import argparse
import asyncio
import os
import sys

# Add backend to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from interpreter.models.database import engine, init_db, reset_db


async def create_tables(reset: bool):
    """Create the conversation tables, optionally dropping them first."""
    if reset:
        print("⚠️  Dropping conversations and conversation_messages...")
        await reset_db()

    print("Creating conversations and conversation_messages...")
    await init_db()
    await engine.dispose()
    print("✅ Database schema ready for the Medical Interpreter")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the interpreter database tables")
    parser.add_argument("--reset", action="store_true", help="drop existing tables and their data first")
    asyncio.run(create_tables(parser.parse_args().reset))
