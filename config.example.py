# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "BGTASKS_APP_NAME": "App display name used in log lines (default: bgtasks).",
    "BGTASKS_LOG_LEVEL": "Console logging level (default: INFO).",
    "BGTASKS_LOG_DIR": "Directory for bgtasks.log (default: .local/bgtasks).",
    # Task scheduler
    "BGTASKS_MAX_CONCURRENT": "Max tasks running at once (default: 2, minimum 1).",
    # Request queues
    "BGTASKS_MARKETPLACE_CONCURRENCY": "Parallel marketplace API calls (default: 3).",
    "BGTASKS_AI_CONCURRENCY": "Parallel AI requests (default: 2).",
    "BGTASKS_GENERAL_CONCURRENCY": "Parallel general requests (default: 5).",
}
