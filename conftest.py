"""Puts the repository root on sys.path so tests import core/, grinn/ and compute_subnetwork."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))
