"""
Root conftest.py: puts the project root on sys.path so the top-level
modules and the app_routes/app_services directories import in tests.
"""
import sys
from pathlib import Path

project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
