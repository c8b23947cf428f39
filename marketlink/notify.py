import json
import logging
from typing import Optional

import requests

from marketlink.engine import RunResult

logger = logging.getLogger(__name__)


def format_run_summary(result: RunResult) -> str:
    payload = {
        "topic": result.topic,
        "algo_version": result.algo_version,
        "venues": f"{result.left_venue}->{result.right_venue}",
        "left_count": result.left_count,
        "right_count": result.right_count,
        "saved_after_cap": result.saved_after_cap,
        "created": result.created,
        "updated": result.updated,
        "fatal": result.fatal,
        "errors": result.errors[:20],
    }
    return json.dumps(payload, indent=2, sort_keys=True)


def notify_run(result: RunResult, slack_webhook_url: Optional[str]) -> bool:
    """Post a failed run's summary to Slack; returns whether a post was attempted."""
    if result.ok or not slack_webhook_url:
        return False

    message = format_run_summary(result)
    try:
        requests.post(slack_webhook_url, json={"text": message}, timeout=10)
    except requests.RequestException as exc:
        logger.warning("Slack notification failed: %s", exc)
    return True
