"""
Desktop notifications for Ralph.

Uses notify-send (freedesktop compliant). Silently skipped where it isn't
installed; notification problems never affect the run.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run(
            ["notify-send", "--urgency", urgency, "--app-name", "Ralph", title, message],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_complete(iterations: int):
    notify("Ralph: PRD complete", f"All tasks done after {iterations} iterations", "low")


def notify_max_iterations(iterations: int):
    notify("Ralph: iteration limit", f"Stopped after {iterations} iterations with tasks remaining", "normal")


def notify_halted(error: str | None):
    notify("Ralph: halted", f"Stopped on error: {error or 'unknown'}", "critical")


def notify_outcome(result):
    """Notify for a LoopResult's terminal status."""
    if result.status == "complete":
        notify_complete(result.iterations)
    elif result.status == "max_iterations":
        notify_max_iterations(result.iterations)
    elif result.status == "halted":
        notify_halted(result.last_error)
