"""Test session setup.

Points the service at a throwaway SQLite file and upload directory before
any project module reads its configuration.
"""

import os
import sys
import tempfile

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

_tmp_dir = tempfile.mkdtemp(prefix="custom_tables_tests_")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_tmp_dir, "test.db")
os.environ["UPLOAD_DIR"] = os.path.join(_tmp_dir, "uploads")
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["APP_ENV"] = "test"
