import os
import json
import time

CSV_HEADER = "Port,PID,Protocol,Process,Path,Protected"


def _quote(value):
    return '"' + str(value).replace('"', '""') + '"'


def to_json(entries):
    return json.dumps([e.to_dict() for e in entries], indent=2)


def to_csv(entries):
    lines = [CSV_HEADER]
    for e in entries:
        lines.append(",".join([
            str(e.port),
            str(e.pid),
            e.protocol,
            _quote(e.process_name),
            _quote(e.process_path),
            "true" if e.is_protected else "false",
        ]))
    return "\n".join(lines) + "\n"


def render(entries, fmt="json"):
    if fmt == "csv":
        return to_csv(entries)
    if fmt == "json":
        return to_json(entries)
    raise ValueError(f"unknown export format: {fmt}")


def write_export(entries, fmt, directory):
    """Write entries to a timestamped file in `directory` and return its path."""
    text = render(entries, fmt)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"ports-{time.strftime('%Y%m%d-%H%M%S')}.{fmt}")
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path
