import csv
from typing import Iterable, TextIO

from models import AccountSnapshot

OUTPUT_COLUMNS = ("client", "available", "held", "total", "locked")


def format_snapshot(snapshot: AccountSnapshot) -> dict:
    return {
        "client": snapshot.client,
        "available": str(snapshot.available),
        "held": str(snapshot.held),
        "total": str(snapshot.total),
        "locked": "true" if snapshot.locked else "false",
    }


def write_accounts(snapshots: Iterable[AccountSnapshot], stream: TextIO) -> None:
    """Render final account state as CSV, one row per snapshot."""
    writer = csv.DictWriter(stream, fieldnames=OUTPUT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for snapshot in snapshots:
        writer.writerow(format_snapshot(snapshot))
    stream.flush()
