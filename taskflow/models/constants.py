"""Constants for TaskFlow.

This module centralizes magic numbers and default values used throughout the application.
"""

# Task defaults
DEFAULT_ESTIMATED_TIME = 15
DEFAULT_WORKSPACE = "personal"
DEFAULT_ENERGY = "medium"
MAX_TAGS = 3

# Gamification
XP_PER_COMPLETED_TASK = 50
XP_PER_LEVEL = 500

# Auth
TOKEN_TTL_DAYS = 7
LINK_CODE_TTL_MINUTES = 15
OAUTH_STATE_TTL_MINUTES = 10

# Scanning
DEFAULT_SCAN_BATCH_SIZE = 50
DEFAULT_SCAN_FREQUENCY_MINUTES = {
    "gmail": 60,
    "slack": 15,
    "telegram": 5,
}
MIN_SCAN_FREQUENCY_MINUTES = 1
MAX_SCAN_FREQUENCY_MINUTES = 24 * 60

# Telegram reminders
OVERDUE_REMINDER_INTERVAL_MINUTES = 60
DAILY_SUMMARY_CHECK_MINUTES = 1

# How much of an email goes to the classifier vs. into the draft description
EMAIL_CLASSIFY_CHARS = 2000
EMAIL_DESCRIPTION_CHARS = 1000

# Confidence recorded for drafts created straight from a Telegram message
TELEGRAM_DIRECT_CONFIDENCE = 0.7

MEETING_KEYWORDS = (
    "meeting",
    "call",
    "zoom",
    "google meet",
    "teams",
    "invitation",
    "invite",
    "calendar",
    "schedule",
    "appointment",
)
