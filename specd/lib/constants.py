"""Shared constants for specd."""

import re

# Specification IDs: zero padded ordinal prefix plus a slug of the title
SPEC_ID_PATTERN = re.compile(r'^(\d{4})-[a-z0-9][a-z0-9-]*$')
SPEC_ID_DIGITS = 4
MAX_SLUG_LEN = 40

# Task IDs generated by the store (callers may also supply their own)
TASK_ID_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_-]*$')

# Feature artifact names
FEATURE_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_-]*$')

DEFAULT_ROOT_DIRNAME = ".specd"
ROOT_ENV_VAR = "SPECD_ROOT"

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_INVALID_TRANSITION = 3
EXIT_MISSING_ARTIFACT = 4
EXIT_CAPABILITY_VIOLATION = 5
EXIT_CYCLIC_DEPENDENCY = 6
EXIT_STOP = 7
EXIT_CLARIFY = 8
EXIT_STALLED = 9
EXIT_DUPLICATE_ID = 10
EXIT_BUSY = 11
EXIT_IMMUTABLE = 12
