"""Shared constants for the Lingo Coach progress backend."""

# Lesson chat completes after fifteen minutes of conversation.
LESSON_CHAT_THRESHOLD_SECONDS = 15 * 60

# Voice and communication practice. 90000 seconds is twenty-five hours, which
# effectively disables automatic completion; kept as the shipped value until
# product confirms the intended threshold.
VOICE_PRACTICE_THRESHOLD_SECONDS = 90000

WEEKDAY_ABBREVIATIONS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

LOCAL_CACHE_KEY_PREFIX = "lesson_progress_"

SOFT_FAILURE_WARNING = (
    "Progress may not be saved to the cloud. "
    "Your last session was kept locally and will be synced later."
)
