from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _bootstrap_app():
    from nemy import create_app

    app = create_app()
    app.app_context().push()
    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the quick order/ledger audit or rebuild wallets from the ledger.")
    parser.add_argument("--mode", choices=("quick", "wallet_ledger"), default="quick", help="Which check to run.")
    parser.add_argument("--since", default="", help="Optional since marker for wallet_ledger report metadata.")
    parser.add_argument("--persist", action="store_true", help="Persist report row in reconciliation_reports.")
    args = parser.parse_args(argv)

    _bootstrap_app()
    from nemy.services.audit_service import run_quick_audit
    from nemy.services.reconciliation_service import persist_report, recompute_wallet_balances

    if args.mode == "wallet_ledger":
        summary = recompute_wallet_balances(since=(args.since or None))
    else:
        summary = run_quick_audit()
    if args.persist:
        row = persist_report(summary, created_by="ops")
        summary["report_id"] = int(row.id)

    print(json.dumps(summary, indent=2))
    return 0 if summary.get("overall_status") == "PASSED" else 2


if __name__ == "__main__":
    os.environ.setdefault("FLASK_APP", "main.py")
    sys.exit(main())
