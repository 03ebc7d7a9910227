"""Clear the Redis-backed notification log (useful for testing)."""

import asyncio

from delivery_dispatch.config import get_settings
from delivery_dispatch.state.manager import StateManager


async def reset_notifications() -> None:
    """Delete the notification list from Redis."""
    settings = get_settings()
    print(f"\n⚠️  WARNING: This will delete every notification stored under '{settings.notification_key}'!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting notifications...")

    state_manager = StateManager(settings.redis_url)
    await state_manager.connect()
    await state_manager.delete(settings.notification_key)
    await state_manager.disconnect()

    print("✓ Notification log cleared\n")


if __name__ == "__main__":
    asyncio.run(reset_notifications())
