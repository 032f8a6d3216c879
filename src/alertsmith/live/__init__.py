"""Live preview: hot-reload pipeline, viewer sessions and the preview server."""

from alertsmith.live.pipeline import HotReloadPipeline, PipelineState, describe_failure
from alertsmith.live.server import create_app, load_resources, serve
from alertsmith.live.sessions import FAILURE, LOAD, UPDATE, ViewerHub, ViewerSession, encode_event
from alertsmith.live.watch import FileChange, FileWatcher

__all__ = [
    "FAILURE",
    "FileChange",
    "FileWatcher",
    "HotReloadPipeline",
    "LOAD",
    "PipelineState",
    "UPDATE",
    "ViewerHub",
    "ViewerSession",
    "create_app",
    "describe_failure",
    "encode_event",
    "load_resources",
    "serve",
]
