"""WSGI entry: `flask --app clinic_scheduler.app run` or `python -m clinic_scheduler.app`."""

from __future__ import annotations

import os

from . import APP_HOST, APP_PORT, create_app


app = create_app()


if __name__ == "__main__":
    app.run(
        host=os.getenv("CLINIC_HOST", APP_HOST),
        port=int(os.getenv("CLINIC_PORT", str(APP_PORT))),
        debug=False,
    )
