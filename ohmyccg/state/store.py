"""Durable JSON document store under the project state directory.

Documents are written whole (read/merge/write, last write wins). There is no
cross-process locking: two invocations touching the same document nearly
simultaneously race, and the later writer wins.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from ohmyccg.config import PROJECT_DIR_NAME
from ohmyccg.state.models import utc_now_iso

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

STATE_SUBDIR = "state"


class StateStore:
    """Key-named JSON documents in ``<workdir>/.oh-my-ccg/state``."""

    def __init__(self, workdir: Path | str) -> None:
        self.workdir = Path(workdir)
        self.state_dir = self.workdir / PROJECT_DIR_NAME / STATE_SUBDIR

    def path_for(self, name: str) -> Path:
        return self.state_dir / f"{name}.json"

    def read(self, name: str) -> dict[str, Any] | None:
        """Read a document. Missing or malformed files read as ``None``."""
        path = self.path_for(name)
        if not path.exists():
            return None

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable state document {path.name}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring state document {path.name}: not a JSON object")
            return None
        return data

    def write(self, name: str, document: dict[str, Any]) -> dict[str, Any]:
        """Write a document, stamping a trailing ``updatedAt``.

        Returns the document as written.
        """
        stamped = {k: v for k, v in document.items() if k != "updatedAt"}
        stamped["updatedAt"] = utc_now_iso()

        self.state_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self.state_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(stamped, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

        return stamped

    def delete(self, name: str) -> None:
        """Delete a document. No-op if absent."""
        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            pass

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def load_model(self, name: str, schema: type[M] | TypeAdapter) -> Any:
        """Read and validate a document. Invalid documents read as ``None``."""
        data = self.read(name)
        if data is None:
            return None

        try:
            if isinstance(schema, TypeAdapter):
                return schema.validate_python(data)
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid state document {name}: {e.error_count()} validation errors")
            return None

    def save_model(self, name: str, model: BaseModel) -> None:
        """Persist a state model, refreshing its ``updated_at`` in place."""
        written = self.write(name, model.model_dump(mode="json", by_alias=True))
        if "updated_at" in type(model).model_fields:
            model.updated_at = written["updatedAt"]
