"""
Workspace - isolated, run-scoped directory for staging inputs and
collecting outputs.

Layout:
    <root>/
        inputs/     staged input payloads, one file per bound input
        outputs/    files produced by the backend, one per declared output

Workspace roots come from a backend's path template. A $TEMP$ token in the
template is replaced by a fresh unique directory name; a template without
the token is treated as a parent directory and a unique child is created.
"""

import logging
import mimetypes
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from mcruntime.config import RANDOM_DIR_TOKEN
from mcruntime.errors import WorkspaceError
from mcruntime.schemas import ParameterDescriptor, normalize_mime_type

logger = logging.getLogger(__name__)

_EXTENSION_OVERRIDES = {
    "application/geotiff": ".tif",
    "image/tiff": ".tif",
    "image/geotiff": ".tif",
    "image/jpeg": ".jpg",
    "text/plain": ".txt",
}


def extension_for(mime_type: str) -> str:
    """File extension for a MIME type, empty for wildcards and unknown types."""
    mime_type = normalize_mime_type(mime_type)
    if "*" in mime_type:
        return ""
    if mime_type in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[mime_type]
    return mimetypes.guess_extension(mime_type) or ""


class Workspace:
    """
    An allocated run directory.

    Use Workspace.allocate() rather than the constructor; the constructor
    only wraps an existing directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.inputs_dir = self.root / "inputs"
        self.outputs_dir = self.root / "outputs"
        self._removed = False

    @classmethod
    def allocate(cls, template: str) -> "Workspace":
        """
        Create a fresh workspace directory from a path template.

        Args:
            template: Path template, optionally containing $TEMP$

        Returns:
            Workspace with inputs/ and outputs/ created

        Raises:
            WorkspaceError: If the directory cannot be created
        """
        try:
            if RANDOM_DIR_TOKEN in template:
                root = Path(template.replace(RANDOM_DIR_TOKEN, f"mcrun-{uuid.uuid4().hex}")).expanduser()
                root.mkdir(parents=True, exist_ok=False)
            else:
                parent = Path(template).expanduser()
                parent.mkdir(parents=True, exist_ok=True)
                root = Path(tempfile.mkdtemp(prefix="mcrun-", dir=parent))

            workspace = cls(root)
            workspace.inputs_dir.mkdir()
            workspace.outputs_dir.mkdir()
        except OSError as e:
            raise WorkspaceError(f"Cannot allocate workspace from template '{template}': {e}", path=template)

        logger.debug(
            f"Allocated workspace {root}",
            extra={"event": "workspace_allocated", "metadata": {"workspace": str(root)}},
        )
        return workspace

    @property
    def removed(self) -> bool:
        return self._removed

    def input_path(self, param: ParameterDescriptor, mime_type: str) -> Path:
        return self.inputs_dir / f"{param.identifier.slug}{extension_for(mime_type)}"

    def output_path(self, param: ParameterDescriptor, mime_type: str) -> Path:
        return self.outputs_dir / f"{param.identifier.slug}{extension_for(mime_type)}"

    def find_output(self, param: ParameterDescriptor, mime_type: str) -> Optional[Path]:
        """
        Locate the file a backend produced for an output parameter.

        The expected name is tried first, then any file sharing the slug stem.
        """
        expected = self.output_path(param, mime_type)
        if expected.is_file():
            return expected
        slug = param.identifier.slug
        bare = self.outputs_dir / slug
        if bare.is_file():
            return bare
        for candidate in sorted(self.outputs_dir.glob(f"{slug}.*")):
            if candidate.is_file():
                return candidate
        return None

    def cleanup(self) -> None:
        """
        Remove the workspace directory and its contents.

        Raises:
            WorkspaceError: If the directory cannot be removed
        """
        if self._removed:
            return
        try:
            if self.root.exists():
                shutil.rmtree(self.root)
        except OSError as e:
            raise WorkspaceError(f"Cannot remove workspace {self.root}: {e}", path=str(self.root))
        self._removed = True
        logger.debug(
            f"Removed workspace {self.root}",
            extra={"event": "workspace_removed", "metadata": {"workspace": str(self.root)}},
        )

    def __repr__(self) -> str:
        return f"Workspace(root={self.root}, removed={self._removed})"
