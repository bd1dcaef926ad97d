"""Configuration for the live agent.

Settings live in config.json next to this file and are merged over DEFAULTS.
The API key is never stored in config.json; see get_api_key().
"""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = Path(__file__).parent / "config.json"

# Audio formats expected by the Live API
INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
CAPTURE_FRAME_SIZE = 4096  # samples per capture callback

# Silence delay before a pending user turn is reported as "processing".
# Local heuristic only, tune freely.
PROCESSING_DEBOUNCE = 1.2

DEFAULTS = {
    "language_accent": "english-us",
    "voice": None,
    "live_model": "gemini-2.5-flash-native-audio-preview-09-2025",
    "translation_model": "gemini-2.5-flash",
    "input_sample_rate": INPUT_SAMPLE_RATE,
    "output_sample_rate": OUTPUT_SAMPLE_RATE,
    "capture_frame_size": CAPTURE_FRAME_SIZE,
    "processing_debounce": PROCESSING_DEBOUNCE,
    "log_dir": "~/.local/share/live-agent/sessions",
    "save_session_log": True,
    "document_path": "",
    "translate_to": "",
    "debug_mode": False,
}

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")
API_KEY_FILES = (
    Path.home() / ".config" / "gemini" / "api_key",
    Path.home() / ".gemini" / "api_key",
)


def load_config(path: Path = None) -> dict:
    """Load configuration, falling back to defaults for missing keys."""
    path = path or CONFIG_FILE
    try:
        if path.exists():
            with open(path) as f:
                config = json.load(f)
            return {**DEFAULTS, **config}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read %s, using defaults: %s", path, e)
    return dict(DEFAULTS)


def save_config(config: dict, path: Path = None):
    """Write configuration to disk."""
    path = path or CONFIG_FILE
    with open(path, "w") as f:
        json.dump(config, f, indent=2)


def get_api_key():
    """Get the Gemini API key from the environment or a key file."""
    for var in API_KEY_ENV_VARS:
        key = os.environ.get(var)
        if key:
            return key
    for path in API_KEY_FILES:
        if path.exists():
            key = path.read_text().strip()
            if key:
                return key
    return None
