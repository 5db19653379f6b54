import csv
import io
import os

from models import Report, ReportRow

PLATFORM_NAME = os.environ.get("STATION_NAME", "Studio Radio")
CSV_HEADER = [
    "Track Title",
    "Composer",
    "Writers",
    "ISRC",
    "Total Plays",
    "Counted Plays",
    "First Play",
    "Last Play",
]


def _fmt(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def _sorted_rows(report: Report) -> list[ReportRow]:
    return sorted(report.rows, key=lambda r: r.counted_plays, reverse=True)


def to_csv(report: Report, pro_name: str) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([f"{pro_name} Performance Report"])
    writer.writerow([f"Platform: {PLATFORM_NAME}"])
    writer.writerow([f"Period: {_fmt(report.period_start)} - {_fmt(report.period_end)}"])
    writer.writerow([f"Generated: {_fmt(report.generated_at)}"])
    writer.writerow([f"Total Plays: {report.total_plays}"])
    writer.writerow([f"Counted Plays ({pro_name}-qualifying): {report.counted_plays}"])
    writer.writerow([])
    writer.writerow(CSV_HEADER)
    for row in _sorted_rows(report):
        writer.writerow(
            [
                row.title,
                row.composer,
                "; ".join(row.writers),
                row.isrc_code or "",
                row.total_plays,
                row.counted_plays,
                _fmt(row.first_play),
                _fmt(row.last_play),
            ]
        )
    return buf.getvalue()


def to_text(report: Report, pro_name: str) -> str:
    lines = [
        f"{pro_name} PERFORMANCE REPORT",
        f"Platform:   {PLATFORM_NAME}",
        f"Period:     {_fmt(report.period_start)} - {_fmt(report.period_end)}",
        f"Generated:  {_fmt(report.generated_at)}",
        "",
        f"Total Plays: {report.total_plays}",
        f"Counted Plays (qualifying): {report.counted_plays}",
        "",
        "-" * 60,
    ]
    for i, row in enumerate(_sorted_rows(report), start=1):
        lines += [
            f"{i}. {row.title}",
            f"   Composer:       {row.composer}",
            f"   Writers:        {', '.join(row.writers) or row.composer}",
            f"   ISRC:           {row.isrc_code or 'N/A'}",
            f"   Total Plays:    {row.total_plays}",
            f"   Counted Plays:  {row.counted_plays}",
            f"   First Play:     {_fmt(row.first_play)}",
            f"   Last Play:      {_fmt(row.last_play)}",
            "",
        ]
    return "\n".join(lines)
