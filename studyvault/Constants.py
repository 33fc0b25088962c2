# Constants.py
# Description: Constants for the offline store, autosave and sync layers
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Local store partitions ---
PARTITION_NOTES = "notes"
PARTITION_FILES = "files"
PARTITION_SYNC_QUEUE = "sync_queue"
PARTITION_PREFERENCES = "user_preferences"
PARTITION_CACHE = "cached_content"
PARTITION_QUIZ_AUTOSAVES = "quiz_autosaves"
ALL_PARTITIONS = [PARTITION_NOTES, PARTITION_FILES, PARTITION_SYNC_QUEUE, PARTITION_PREFERENCES,
                  PARTITION_CACHE, PARTITION_QUIZ_AUTOSAVES]

# --- Cache ---
DEFAULT_CACHE_TTL_MINUTES = 60

# --- Quiz autosave timing (seconds) ---
AUTOSAVE_DEBOUNCE_SECONDS = 2.0
AUTOSAVE_INTERVAL_SECONDS = 30.0
AUTOSAVE_SAVED_RESET_SECONDS = 2.0
AUTOSAVE_ERROR_RESET_SECONDS = 3.0
AUTOSAVE_PROGRESS_NOTIFY_EVERY = 5
AUTOSAVE_UNLOAD_PROMPT = "You have unsaved quiz progress. Are you sure you want to leave?"

# --- Sync ---
SYNC_BATCH_SIZE = 50
SYNC_MAX_RETRIES = 3

# --- Edge functions ---
EDGE_FUNCTION_TIMEOUT_SECONDS = 30.0
EDGE_FN_NOTE_ENHANCER = "ai-note-enhancer"
EDGE_FN_QUIZ_GENERATOR = "ai-quiz-generator"
EDGE_FN_CHAT = "ai-chat-handler"
EDGE_FN_SMART_ORGANIZER = "ai-smart-organizer"

# --- Preference keys ---
PREF_NOTIFICATION_PREFERENCES = "notification_preferences"

#
# End of Constants.py
########################################################################################################################
