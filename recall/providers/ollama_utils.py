"""
Shared Ollama utilities: base URL resolution and model availability.
"""

import json
import logging
import os
import sys

import requests

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama server URL: explicit value, OLLAMA_HOST, then default."""
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


def ollama_ensure_model(base_url: str, model: str) -> None:
    """Check if an Ollama model is available locally; pull it if not.

    Streams pull progress to stderr so the user sees download status.
    Raises ConfigurationError if Ollama is unreachable or the pull fails.
    """
    bare = model.split(":")[0]

    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise ConfigurationError(
            f"Cannot reach Ollama at {base_url}. "
            "Is Ollama running? Start it with: ollama serve"
        ) from e

    installed = {m["name"] for m in resp.json().get("models", [])}
    # Ollama lists models as "name:tag"
    if {model, f"{model}:latest", bare, f"{bare}:latest"} & installed:
        return

    logger.info("Pulling Ollama model %s (first use)...", model)
    print(f"Pulling Ollama model '{model}' (first use)...", file=sys.stderr)

    try:
        resp = requests.post(
            f"{base_url}/api/pull",
            json={"name": model, "stream": True},
            stream=True,
            timeout=600,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise ConfigurationError(f"Failed to pull Ollama model '{model}': {e}") from e

    last_status = ""
    for line in resp.iter_lines():
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue

        if data.get("error"):
            print("", file=sys.stderr)
            raise ConfigurationError(
                f"Ollama pull failed for '{model}': {data['error']}"
            )

        status = data.get("status", "")
        total = data.get("total", 0)
        completed = data.get("completed", 0)
        if total and completed:
            print(f"\r  {status}: {int(completed / total * 100)}%",
                  end="", file=sys.stderr, flush=True)
        elif status != last_status:
            print(f"\n  {status}", end="", file=sys.stderr, flush=True)
        last_status = status

    print(f"\n  Model '{model}' ready.", file=sys.stderr)
