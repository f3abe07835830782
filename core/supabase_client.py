from supabase import create_client
from core.config import settings, logger
import asyncio
from functools import partial

# Photos are written with the service role key so bucket policies cannot block uploads
_supabase_client = None
_init_lock = asyncio.Lock()

async def get_supabase_client():
    """Initializes and returns the service-role Supabase client (thread-safe)."""
    global _supabase_client

    if _supabase_client is None:
        async with _init_lock:
            # Double check after acquiring lock
            if _supabase_client is None:
                url = settings.SUPABASE_URL
                key = settings.SUPABASE_SERVICE_KEY

                if not (url and key):
                    logger.error("Supabase URL or Service Role Key not configured. Cannot create client.")
                    raise ValueError("Supabase URL or Service Role Key not configured")

                logger.info("Initializing Supabase client with service role key...")
                try:
                    # create_client is synchronous
                    loop = asyncio.get_running_loop()
                    _supabase_client = await loop.run_in_executor(None, partial(create_client, url, key))
                except Exception as e:
                    logger.error(f"Failed to initialize Supabase client: {e}", exc_info=True)
                    raise RuntimeError(f"Failed to initialize Supabase client: {e}")

                logger.info("Supabase client initialized successfully.")

    return _supabase_client
