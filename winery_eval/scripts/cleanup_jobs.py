import asyncio
import logging
import sys

from winery_eval.databases.job_store import get_job_store

# Configure logging to show INFO level logs to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


async def main() -> int:
    logging.info("Removing expired evaluation jobs")
    removed = await get_job_store().cleanup_expired_jobs()
    logging.info(f"Removed {removed} expired jobs")
    return removed


if __name__ == "__main__":
    asyncio.run(main())
