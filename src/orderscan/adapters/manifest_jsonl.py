from __future__ import annotations
import os, json
from dataclasses import asdict
from ..application.planning import merge_intervals, subtract_interval
from ..ports.storage import ManifestSink
from ..domain.models import ChunkRec

class JSONLManifest(ManifestSink):
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def reset(self) -> None:
        """Start a fresh manifest (a full collect rewrites the output from scratch)."""
        with open(self.path, "w") as f:
            f.flush(); os.fsync(f.fileno())

    def append(self, rec: ChunkRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":")) + "\n"
        with open(self.path, "a") as f:
            f.write(line); f.flush(); os.fsync(f.fileno())


def load_records(path: str) -> list[ChunkRec]:
    out: list[ChunkRec] = []
    if not os.path.exists(path):
        return out
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                out.append(ChunkRec(**json.loads(line)))
            except (ValueError, TypeError):
                # torn last line after a crash
                continue
    return out


def pending_ranges(path: str) -> list[tuple[int, int]]:
    """Failed ranges not yet covered by any "done" record, merged and sorted."""
    failed: list[tuple[int, int]] = []
    done: list[tuple[int, int]] = []
    for rec in load_records(path):
        iv = (rec.from_block, rec.to_block)
        (done if rec.status == "done" else failed).append(iv)
    covered = merge_intervals(done)
    out: list[tuple[int, int]] = []
    for iv in merge_intervals(failed):
        out.extend(subtract_interval(iv, covered))
    return out
