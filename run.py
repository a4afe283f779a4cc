"""Run the ledger API locally.

Usage:
    python run.py

If a ./venv exists and this was started with another interpreter,
the script re-executes itself under the venv Python.

For local webhooks, forward Stripe events with:
    stripe listen --forward-to localhost:4000/webhooks/payment-provider
"""

import os
import sys
import subprocess

# ── Re-exec under ./venv if present ──
_project_dir = os.path.dirname(os.path.abspath(__file__))
_venv_python = os.path.join(_project_dir, "venv", "bin", "python")

if os.path.exists(_venv_python) and os.path.realpath(sys.executable) != os.path.realpath(_venv_python):
    print("[run.py] Switching to venv Python...")
    try:
        sys.exit(subprocess.call([_venv_python] + sys.argv))
    except KeyboardInterrupt:
        sys.exit(0)

# ── App ──
from dotenv import load_dotenv

load_dotenv()  # before create_app reads the config

from ledger import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=int(os.environ.get("PORT", 4000)))
