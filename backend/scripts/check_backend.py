#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from backend/:
  python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Set DATABASE_URL, SUPABASE_JWT_SECRET, ONESIGNAL_APP_ID, ONESIGNAL_REST_API_KEY.")
    else:
        print("OK  .env exists")

    # 2) Credentials the routes refuse to run without
    from wakti_realtime.config import settings

    if settings.supabase_jwt_secret:
        print("OK  SUPABASE_JWT_SECRET set")
    else:
        errors.append("SUPABASE_JWT_SECRET is empty: every authenticated route will answer 500.")
        print("FAIL SUPABASE_JWT_SECRET")
    if settings.onesignal_app_id and settings.onesignal_rest_api_key:
        print("OK  OneSignal credentials set")
    else:
        errors.append("ONESIGNAL_APP_ID / ONESIGNAL_REST_API_KEY empty: push routes answer 500 and the queue job is skipped.")
        print("FAIL OneSignal credentials")

    # 3) DB connection and tables
    try:
        from sqlalchemy import inspect, text
        from wakti_realtime.db.session import engine
        from wakti_realtime.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = sorted(set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names()))
        if missing:
            errors.append(f"Tables missing: {', '.join(missing)}. Run: alembic upgrade head")
            print("FAIL Tables missing:", ", ".join(missing))
        else:
            print("OK  All tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 4) App import (catches missing deps, bad imports)
    try:
        from wakti_realtime.main import app  # noqa: F401
        print("OK  App import (wakti_realtime.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        return 1

    print("\nAll checks passed. Start with: uvicorn wakti_realtime.main:app --reload --port 8000")
    return 0


if __name__ == "__main__":
    sys.exit(main())
