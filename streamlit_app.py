"""
TaxScope - Streamlit Cloud Entry Point
======================================
Entry point for `streamlit run streamlit_app.py` and Streamlit Cloud.

The backend modules live in backend/ and import each other as top-level
modules, so that directory goes on the path before the app is imported.
"""

import sys
import os

# Get absolute paths
_this_file = os.path.abspath(__file__)
_this_dir = os.path.dirname(_this_file)
_backend_path = os.path.join(_this_dir, "backend")

# Add backend directory to Python path
if _backend_path not in sys.path:
    sys.path.insert(0, _backend_path)

# Import and run the app (executes all streamlit code)
import app
