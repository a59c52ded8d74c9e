import asyncio
import os
import sys

# Add backend to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from interpreter.config.redis import get_redis, close_redis


async def clear_sessions():
    """Remove stale session presence keys left by a crashed server."""
    print("🧹 Clearing session presence keys...")
    redis = await get_redis()
    removed = 0
    async for key in redis.scan_iter(match="session:*"):
        await redis.delete(key)
        removed += 1
    print(f"✅ Removed {removed} keys.")
    await close_redis()


if __name__ == "__main__":
    asyncio.run(clear_sessions())
