import csv
from io import StringIO


def export_rows_csv(rows: list[dict]) -> str:
    out = StringIO()
    if not rows:
        return ""

    columns = list(rows[0].keys())
    w = csv.DictWriter(out, fieldnames=columns, extrasaction="ignore")
    w.writeheader()
    for row in rows:
        w.writerow({key: ("" if row.get(key) is None else row.get(key)) for key in columns})

    return out.getvalue()


def export_filename(export_type: str, exported_at) -> str:
    return f"spadesk-{export_type}-{exported_at.strftime('%Y%m%d-%H%M%S')}.csv"
