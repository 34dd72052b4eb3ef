# config.py
# Environment-driven defaults. Agents and clients take explicit arguments;
# these constants only supply their defaults.

import os

from dotenv import load_dotenv

load_dotenv()

MODEL_ID = os.getenv("STEPWISE_MODEL_ID", "gpt-4o-mini")
BASE_URL = os.getenv("STEPWISE_BASE_URL", "https://api.openai.com/v1")
API_KEY_ENV = "OPENAI_API_KEY"
TEMPERATURE = float(os.getenv("STEPWISE_TEMPERATURE", "0.5"))
MAX_TOKENS = int(os.getenv("STEPWISE_MAX_TOKENS", "1500"))

MAX_STEPS = int(os.getenv("STEPWISE_MAX_STEPS", "10"))
OBSERVATION_CHAR_LIMIT = 30000

# Interpreter budget: statements plus loop iterations per script.
MAX_OPERATIONS = int(os.getenv("STEPWISE_MAX_OPERATIONS", "10000000"))

AUTHORIZED_IMPORTS = (
    "collections",
    "datetime",
    "itertools",
    "math",
    "queue",
    "random",
    "re",
    "stat",
    "statistics",
    "time",
    "unicodedata",
)

TRANSCRIPT_PATH = os.getenv("STEPWISE_TRANSCRIPT_PATH", "logs.txt")

# Parent directory for sandboxed runs; None uses the system temp location.
SANDBOX_DIR = os.getenv("SANDBOX_DIR") or None
