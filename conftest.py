"""Root pytest configuration: make the kreep package under src/ importable without installing."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))
