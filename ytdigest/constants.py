"""Constants used across ytdigest.

This module defines shared constants to ensure consistency.
"""

from ytdigest_events.envelope import SUMMARY_CREATED, SUMMARY_FAILED, WORK_REQUESTED

SERVICE_NAME = "ytdigest"

# Stream keys (each event kind is written to the stream named after it)
WORK_STREAM = WORK_REQUESTED
RESULT_STREAM = SUMMARY_CREATED
FAILURE_STREAM = SUMMARY_FAILED

# Redis internal settings
REDIS_BLOCK_MS = 5000
REDIS_CLAIM_INTERVAL_S = 30.0

# Telegram hard limit on a single message
TELEGRAM_MESSAGE_MAX_CHARS = 4096

# Default user-facing replies
QUEUED_MESSAGE = "Your YouTube video is being processed. You will receive the summary when it's ready."
INVALID_MESSAGE = "Please send a valid YouTube video URL"
ERROR_MESSAGE = "Sorry, there was an error processing your request."
FAILED_MESSAGE = "Sorry, we could not summarize this video: {reason}"
