"""
config/settings.py
──────────────────
Engine configuration loaded from environment variables.
"""
import os
from dataclasses import dataclass


@dataclass
class Settings:
    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # I/O budgets in seconds (snapshot, history window, acknowledge)
    SNAPSHOT_TIMEOUT_S: float = float(os.getenv("SNAPSHOT_TIMEOUT_S", "10"))
    HISTORY_TIMEOUT_S: float = float(os.getenv("HISTORY_TIMEOUT_S", "12"))
    ACK_TIMEOUT_S: float = float(os.getenv("ACK_TIMEOUT_S", "10"))

    # History series (SQLite path, ":memory:" for tests)
    HISTORY_DB_PATH: str = os.getenv("HISTORY_DB_PATH", "telemetry_history.db")

    # Simulation
    SIMULATION_SEED: int = int(os.getenv("SIMULATION_SEED", "42"))
    HISTORY_HOURS: int = int(os.getenv("HISTORY_HOURS", "168"))
    SIMULATION_EVENTS: int = int(os.getenv("SIMULATION_EVENTS", "50"))


settings = Settings()
