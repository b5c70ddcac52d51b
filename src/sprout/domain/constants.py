"""Centralized constants for Sprout.

All magic numbers and format defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Block format ----------
ANCHOR_PREFIX = "^sprout-"
DEFAULT_DELIMITER = "|"
ALLOWED_DELIMITERS = ("|", "@", "~", ";")
MAX_OQ_STEPS = 20
MIN_OQ_STEPS = 2

# ---------- Vault walking ----------
IGNORED_DIR_NAMES = {".obsidian", ".sprout", ".trash", ".git"}
NOTE_SUFFIX = ".md"

# ---------- Scheduling ----------
DEFAULT_LEARNING_STEPS_MINUTES = [10, 1440]
DEFAULT_RELEARNING_STEPS_MINUTES = [10]
DEFAULT_REQUEST_RETENTION = 0.9
MIN_REQUEST_RETENTION = 0.7
MAX_REQUEST_RETENTION = 0.99
MAX_INTERVAL_DAYS = 36500
MS_PER_MINUTE = 60_000
MS_PER_DAY = 86_400_000

# ---------- Persistence safety ----------
SAFETY_MIN_DISK_TOTAL = 10  # cards + states
SAFETY_NEAR_EMPTY_RATIO = 0.05
SAFETY_REGRESSION_RATIO = 0.5
SAVE_MAX_ATTEMPTS = 3

# ---------- Backups ----------
MAX_BACKUPS = 12
BACKUP_PREFIX = "data-"
