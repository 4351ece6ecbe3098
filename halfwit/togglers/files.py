"""
File toggler: a candidate is a file path, disabling it removes the file.

Every file is copied once into a stash directory under a random name, with a
MANIFEST mapping stash names back to paths. Enabling a file restores it from
the stash, disabling it deletes the working copy. An existing manifest is
reused, so a crashed session can still put every file back.

Back up anything you care about first; this deletes files in place.
"""

from __future__ import annotations

import json
import os
import shutil
import uuid
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List

from ..errors import ConfigurationError


MANIFEST = "MANIFEST.json"


class FileToggler:
    def __init__(self, paths: Iterable[str], stash_dir: str = ".halfwit/stash") -> None:
        self.paths: List[str] = list(paths)
        self.stash_dir = Path(stash_dir)
        self._manifest: Dict[str, str] = {}  # path -> stash name

    @property
    def manifest(self) -> Dict[str, str]:
        return dict(self._manifest)

    def prepare(self) -> None:
        """Stash every file, or adopt a manifest left by an earlier run."""
        manifest_path = self.stash_dir / MANIFEST
        if manifest_path.exists():
            self._manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            missing = [p for p in self.paths if p not in self._manifest]
            if missing:
                raise ConfigurationError(
                    "Stash manifest does not cover every candidate.",
                    details={"missing": missing, "stash": str(self.stash_dir)},
                )
            return

        for path in self.paths:
            if not os.path.isfile(path):
                raise ConfigurationError(
                    f"Candidate '{path}' is not a regular file.", details={"path": path}
                )
        self.stash_dir.mkdir(parents=True, exist_ok=True)
        manifest: Dict[str, str] = {}
        for path in self.paths:
            name = uuid.uuid4().hex
            shutil.copy2(path, self.stash_dir / name)
            manifest[path] = name
        tmp = manifest_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, manifest_path)
        self._manifest = manifest

    def toggle(self, mask: FrozenSet[str]) -> None:
        if not self._manifest:
            self.prepare()
        for path in self.paths:
            name = self._manifest[path]
            present = os.path.exists(path)
            if path in mask:
                if not present:
                    Path(path).parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(self.stash_dir / name, path)
            elif present:
                os.remove(path)

    def restore(self) -> None:
        """Put every stashed file back, overwriting working copies."""
        if not self._manifest:
            self.prepare()
        for path in self.paths:
            name = self._manifest[path]
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.stash_dir / name, path)

    def discard(self) -> None:
        """Remove the stash. Call only after restore()."""
        shutil.rmtree(self.stash_dir, ignore_errors=True)
        self._manifest = {}
