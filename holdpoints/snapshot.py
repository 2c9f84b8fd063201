"""
Leaderboard snapshot document and its atomic write
"""

import json
import os
import tempfile
from datetime import datetime, timezone

from .errors import SnapshotWriteError


def iso_utc(ts, millis=False):
    if isinstance(ts, datetime):
        moment = ts.astimezone(timezone.utc)
    else:
        moment = datetime.fromtimestamp(ts, tz=timezone.utc)
    text = moment.isoformat(timespec="milliseconds" if millis else "seconds")
    return text.replace("+00:00", "Z")


def build_snapshot(contract, rule, leaderboard, generated_at):
    return {
        "updatedAt": iso_utc(generated_at, millis=True),
        "contract": contract,
        "rule": {
            "windowHours": rule.window_hours,
            "pointsPerWindow": rule.points_per_window,
            "onlyCurrentOwners": True,
            "resetOnSale": True,
            "startAt": iso_utc(rule.start_epoch),
        },
        "totalHolders": len(leaderboard),
        "leaderboard": [row.to_dict() for row in leaderboard],
    }


def write_snapshot(path, snapshot):
    """Write the whole document or nothing: temp file in the same directory, then rename"""
    path = os.fspath(path)
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        body = json.dumps(snapshot, indent=2)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".leaderboard-", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(body)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        # mkstemp creates 0600; the published file is served by other users
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
        tmp_path = None
    except (OSError, TypeError, ValueError) as e:
        raise SnapshotWriteError(f"could not write snapshot to {path}: {e}") from e
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
    return path
