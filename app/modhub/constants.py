"""
Central constants for the modhub application.
"""
from __future__ import annotations

# Default display data for folders created by the user or by dropping one item onto another
DEFAULT_FOLDER_NAME = "New folder"
DEFAULT_FOLDER_DESCRIPTION = ""
DEFAULT_MERGED_FOLDER_DESCRIPTION = "Folder created by combining modules"

# Longest accepted display name / description on rename
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000
