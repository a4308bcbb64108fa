"""ASGI entrypoint for the dataset staging API."""

from dataset_stager.api.app import create_app
from dataset_stager.containers import build_container

app = create_app(build_container())
