from importlib.metadata import PackageNotFoundError, version

from escribano.markup import render_markup
from escribano.models import parse_edit
from escribano.nodes import node_from_json, node_to_json
from escribano.pipeline import apply_text_edits, run_batch
from escribano.redline.engine import EditEngine
from escribano.redline.mapper import project
from escribano.store import InMemoryDocumentStore, JsonFileStore

try:
    __version__ = version("escribano")
except PackageNotFoundError:
    # Running from a source checkout without an installed distribution.
    __version__ = "0.0.0-dev"

__all__ = [
    "EditEngine",
    "InMemoryDocumentStore",
    "JsonFileStore",
    "apply_text_edits",
    "node_from_json",
    "node_to_json",
    "parse_edit",
    "project",
    "render_markup",
    "run_batch",
    "__version__",
]
