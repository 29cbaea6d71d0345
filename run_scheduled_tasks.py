"""
Background Task Runner for the Tennis League
Runs scheduled tasks periodically while the app is running.

This script runs in the background alongside the main Flask app.
"""

import logging
import time
import threading
from datetime import datetime
from scheduled_tasks import notify_expired_suspensions, run_monthly_recalculation, send_challenge_reminders

logger = logging.getLogger(__name__)


def run_hourly_tasks():
    """Tasks that run every hour"""
    last_monthly_run = None
    while True:
        try:
            now = datetime.now()

            logger.info("[BACKGROUND TASKS] Running hourly tasks...")
            send_challenge_reminders()
            notify_expired_suspensions()

            # Monthly recalculation once, on the first run of day 1
            if now.day == 1 and last_monthly_run != now.date():
                logger.info("[BACKGROUND TASKS] Running monthly recalculation...")
                run_monthly_recalculation(now.date())
                last_monthly_run = now.date()

        except Exception as e:
            logger.error(f"[BACKGROUND TASKS] Scheduled task failed: {e}")

        # Wait 1 hour
        time.sleep(3600)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s')
    logger.info("[BACKGROUND TASKS] Starting automated task runner...")
    logger.info("[BACKGROUND TASKS] Challenge reminders and suspension notices: every hour")
    logger.info("[BACKGROUND TASKS] Ranking recalculation: first day of the month")

    task_thread = threading.Thread(target=run_hourly_tasks, daemon=True)
    task_thread.start()

    # Keep main thread alive
    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        logger.info("[BACKGROUND TASKS] Shutting down...")
