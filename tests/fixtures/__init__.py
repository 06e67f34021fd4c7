"""Stand-in daemons for lifecycle tests."""

from pathlib import Path

FIXTURES_DIR = Path(__file__).parent
FAKE_TAPYRUSD = FIXTURES_DIR / "fake_tapyrusd.py"
FAKE_ELECTRS = FIXTURES_DIR / "fake_electrs.py"

__all__ = ["FAKE_ELECTRS", "FAKE_TAPYRUSD", "FIXTURES_DIR"]
