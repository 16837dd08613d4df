"""
Configuration for Storyshelf - models, limits, presets, environment variables.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# Environment variables
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

TEXT_MODEL = os.getenv("TEXT_MODEL", "google/gemini-2.0-flash-001")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "google/gemini-2.5-flash-image-preview")

# Rate limiting (fixed window, per client identifier)
TEXT_RATE_LIMIT = int(os.getenv("TEXT_RATE_LIMIT", "10"))
IMAGE_RATE_LIMIT = int(os.getenv("IMAGE_RATE_LIMIT", "35"))
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_KEYS = int(os.getenv("RATE_LIMIT_MAX_KEYS", "10000"))

# One timeout for every outbound call (client -> API, API -> provider)
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "90"))

# Width of the per-page image fan-out
IMAGE_CONCURRENCY = int(os.getenv("IMAGE_CONCURRENCY", "4"))

# Client side
STORYSHELF_API_URL = os.getenv("STORYSHELF_API_URL", "http://127.0.0.1:8000")
STORYSHELF_DATA_DIR = os.getenv("STORYSHELF_DATA_DIR", ".storyshelf")
LIBRARY_CAP = int(os.getenv("LIBRARY_CAP", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Persisted storage keys
SESSION_STORAGE_KEY = "storybook-session-storage"
LIBRARY_STORAGE_KEY = "bookshelf-storage"
PROJECT_STORAGE_KEY = "sumarizz-project-storage"

# Form options
PROFICIENCY_LEVELS = ["Beginner", "Intermediate", "Expert"]

SOURCE_TYPES = {
    "Academic Papers": "Academic Papers (e.g., arXiv, PubMed)",
    "Existing Newsletters": "Existing Newsletters (e.g., Lenny's Newsletter)",
}

SCROLL_DIRECTIONS = {
    "sidescroll": "Side Scroll",
    "downscroll": "Down Scroll",
}

MEME_PRESET = "Meme"

# Text length presets -> number of storybook pages (None means meme branch)
TEXT_LENGTH_PRESETS = {
    "Short (5 pages with Detailed Paragraphs)": 5,
    "Short (5 Pages with Quick Sentences)": 5,
    "Medium (11 pages)": 11,
    "Full Chapter": 30,
    MEME_PRESET: None,
}

DEFAULT_TEXT_LENGTH = "Short (5 Pages with Quick Sentences)"
DEFAULT_PAGE_COUNT = 5
MIN_PAGE_COUNT = 1
MAX_PAGE_COUNT = 30

# Step metadata
STEPS = [
    {"num": 1, "title": "Topic", "button_label": "Next"},
    {"num": 2, "title": "Options", "button_label": "Generate Summary"},
    {"num": 3, "title": "Summarizing", "button_label": None},
    {"num": 4, "title": "Summary", "button_label": "Generate Storybook"},
    {"num": 5, "title": "Storybook", "button_label": "Save to Bookshelf"},
    {"num": 6, "title": "Bookshelf", "button_label": None},
]
