"""Identifier helpers shared by the repositories and the orchestrator."""

import uuid


def generate_uid() -> str:
    return str(uuid.uuid4())
