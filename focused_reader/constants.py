"""All magic numbers and configuration constants."""

import os

MIN_WPM = 100                       # slowest pacing rate
MAX_WPM = 1000                      # fastest pacing rate
DEFAULT_WPM = 300                   # pacing rate for a freshly opened document
WPM_STEP = 25                       # +/- step for interactive rate changes
MAX_SENTENCE_WORDS = 50             # hard cap on words per speech utterance
SKIP_WINDOW_WORDS = 30              # search window for sentence-boundary skips
SKIP_FALLBACK_WORDS = 10            # skip distance when no boundary is found
LOCAL_VOICE_NATURAL_WPM = 160       # WPM that maps to local speech rate 1.0
LOCAL_VOICE_MIN_RATE = 0.5
LOCAL_VOICE_MAX_RATE = 4.0
LOCAL_VOICE_ENGINE_WPM = 200        # pyttsx3 native rate at speech rate 1.0
NEURAL_VOICE_NATURAL_WPM = 150      # WPM that maps to neural playback rate 1.0
NEURAL_VOICE_MIN_RATE = 0.5
NEURAL_VOICE_MAX_RATE = 3.0
PREFETCH_DEPTH = 2                  # neural sentences synthesized ahead of playback
TTS_RETRY_COUNT = 3                 # max retries per synthesis request
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff
DEFAULT_VOICE = "en-US-AriaNeural"  # neural voice used until one is selected
DEFAULT_QUALITY = "medium"
VOICE_DEMO_PANGRAM = "The quick brown fox jumps over the lazy dog."
LIBRARY_DIR = "library"
SETTINGS_FILE = "settings.json"
VOICE_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "focused-reader", "voices")
WORKER_MODULE = "focused_reader.worker"
VERSION = "0.1.0"
