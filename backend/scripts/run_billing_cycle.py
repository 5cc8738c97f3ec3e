import argparse
from datetime import datetime

from sqlmodel import Session

from app.db.session import engine, init_db
from app.services.billing_scheduler import run_billing_scheduler

parser = argparse.ArgumentParser(description="Renew subscriptions whose billing cycle has ended.")
parser.add_argument("--at", help="ISO timestamp (UTC) to evaluate instead of now", default=None)
args = parser.parse_args()

init_db()
now = datetime.fromisoformat(args.at) if args.at else None

with Session(engine) as s:
    summary = run_billing_scheduler(s, now=now)
    for tenant_id in summary.renewed:
        print(f"Renovado: {tenant_id}")
    for tenant_id, code in summary.failed.items():
        print(f"Error: {tenant_id} | {code}")
