"""
Export a Report to CSV

Builds one of the six reports straight from the database (tenant-wide, or a
single branch) and writes it as a fully quoted CSV file.

Usage:
    python export_report.py LOW_STOCK [--branch b1] [--preset MONTH] [--output path/to/file.csv]
"""

import asyncio
import logging
import sys
from sqlalchemy import select
from database import async_session_maker
from models import Branch
from schemas import ReportType
from date_utils import get_local_today, preset_date_range
from inventory import load_scoped_products
from transactions import load_scoped_transactions
from scope_utils import BranchScope
import report_service


async def export_report(report_type: ReportType, branch_id: str = None, preset: str = "TODAY", output_file: str = None):
    """Write the report to `output_file` (default: the standard report filename)"""
    today = get_local_today()
    start, end = preset_date_range(preset, today)
    scope = BranchScope(branch_ids=frozenset({branch_id}), selected_branch_id=branch_id) if branch_id else BranchScope()

    print("=" * 70)
    print(f"REPORT EXPORT: {report_type.value}")
    print("=" * 70)

    async with async_session_maker() as db:
        products = await load_scoped_products(db, scope)
        transactions = await load_scoped_transactions(db, scope, start, end)
        result = await db.execute(select(Branch).order_by(Branch.created_at, Branch.name))
        branches = scope.filter(result.scalars().all(), key=lambda b: b.id)

    if branch_id and not branches:
        print(f"Branch not found: {branch_id}")
        return False

    table = report_service.build_report(
        report_type,
        products=products,
        transactions=transactions,
        branches=branches,
        start=start,
        end=end,
        today=today,
        selected_branch_id=branch_id,
    )

    output_file = output_file or report_service.report_filename(table)
    with open(output_file, 'w', newline='', encoding='utf-8') as f:
        f.write(report_service.to_csv(table))

    print(f"\nBranch: {table.branch_name}")
    print(f"Period: {start.isoformat()} to {end.isoformat()}")
    print(f"Rows:   {table.total_rows}")
    for key, value in table.summary.items():
        print(f"   {key}: {value}")
    print(f"\nSaved to: {output_file}")

    return True


def _option(name: str):
    if name in sys.argv:
        idx = sys.argv.index(name)
        if idx + 1 < len(sys.argv):
            return sys.argv[idx + 1]
    return None


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2 or sys.argv[1] not in ReportType.__members__:
        print(f"Usage: python export_report.py <{'|'.join(ReportType.__members__)}> "
              f"[--branch ID] [--preset PRESET] [--output FILE]")
        sys.exit(2)

    success = asyncio.run(export_report(
        ReportType(sys.argv[1]),
        branch_id=_option("--branch"),
        preset=(_option("--preset") or "TODAY").upper(),
        output_file=_option("--output"),
    ))
    sys.exit(0 if success else 1)
